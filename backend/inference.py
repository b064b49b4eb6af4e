# inference.py
"""
Client for the external disease-prediction endpoint.

The endpoint takes a base64 leaf image plus the plant name and answers with
a disease label and a confidence in [0, 1]. One request per upload, fixed
timeout, no retries.
"""

import os
import base64
import logging
from typing import NamedTuple, Optional

import requests

log = logging.getLogger(__name__)

LAMBDA_URL = os.getenv("LAMBDA_URL")
INFERENCE_TIMEOUT = float(os.getenv("INFERENCE_TIMEOUT", 30))

if not LAMBDA_URL:
    log.warning("LAMBDA_URL env var not set. Disease prediction requests will fail.")

# Catalog crop names -> plant names the model was trained on
CROP_TO_PLANT = {
    "bell pepper": "pepper",
    "corn": "corn",
    "maize": "maize",
    "paddy": "rice",
    "rice": "rice",
    "wheat": "wheat",
    "cotton": "cotton",
    "sugarcane": "sugarcane",
    "soybean": "soybean",
    "groundnut": "groundnut",
    "tomato": "tomato",
    "potato": "potato",
    "grape": "grape",
    "apple": "apple",
    "pepper": "pepper",
    "cherry": "cherry",
    "blueberry": "blueberry",
    "peach": "peach",
    "raspberry": "raspberry",
    "squash": "squash",
    "strawberry": "strawberry",
    "orange": "orange",
}

RECOMMENDATIONS = {
    "high": [
        "Immediate action required.",
        "Apply appropriate fungicide/pesticide.",
        "Remove severely affected plants to prevent spread.",
        "Consult with agricultural extension officer.",
        "Ensure proper drainage and air circulation.",
    ],
    "medium": [
        "Monitor the crop closely.",
        "Apply preventive fungicide spray.",
        "Remove affected leaves/parts.",
        "Improve field hygiene and sanitation.",
        "Maintain optimal watering schedule.",
    ],
    "low": [
        "Continue regular monitoring.",
        "Maintain good crop hygiene.",
        "Ensure proper nutrition and watering.",
        "Apply organic preventive measures.",
        "Keep field clean and weed-free.",
    ],
}
HEALTHY_RECOMMENDATION = "No disease detected. Continue regular monitoring and good field hygiene."


class InferenceError(RuntimeError):
    """The prediction service failed or returned an unusable answer."""


class Prediction(NamedTuple):
    disease: str
    confidence: float
    severity: str
    recommendations: str


def map_crop_to_plant(crop_name: str) -> str:
    normalized = crop_name.lower().strip()
    return CROP_TO_PLANT.get(normalized, normalized)


def severity_for(confidence: float) -> str:
    if confidence > 0.85:
        return "high"
    if confidence > 0.70:
        return "medium"
    return "low"


def is_healthy(disease: str) -> bool:
    return "healthy" in disease.lower()


def recommendations_for(disease: str, severity: str) -> str:
    if is_healthy(disease):
        return HEALTHY_RECOMMENDATION
    return " ".join(RECOMMENDATIONS.get(severity, RECOMMENDATIONS["medium"]))


class DiseasePredictor:
    def __init__(self, url: Optional[str] = LAMBDA_URL, timeout: float = INFERENCE_TIMEOUT):
        self.url = url
        self.timeout = timeout

    def predict(self, image_bytes: bytes, crop_name: str) -> Prediction:
        """Sends one image to the endpoint. Raises InferenceError on any failure."""
        if not self.url:
            raise InferenceError("Disease detection service is not configured.")

        plant = map_crop_to_plant(crop_name)
        payload = {
            "image": base64.b64encode(image_bytes).decode("ascii"),
            "plant": plant,
            "mode": "predict",
        }
        log.info(f"Sending prediction request for crop '{crop_name}' (plant: {plant}), {len(image_bytes)} bytes")

        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.Timeout as e:
            log.error(f"Timeout after {self.timeout}s contacting prediction service.")
            raise InferenceError("Disease detection service timed out. Please try again.") from e
        except requests.exceptions.HTTPError as e:
            log.error(f"HTTP error from prediction service: {e.response.status_code} {e.response.text[:200]}")
            raise InferenceError("Disease detection service failed. Please try again.") from e
        except requests.exceptions.RequestException as e:
            log.error(f"Network error contacting prediction service: {e}")
            raise InferenceError("Disease detection service is unreachable. Please try again.") from e
        except ValueError as e:
            log.error(f"Prediction service returned a non-JSON body: {e}")
            raise InferenceError("Disease detection service returned an invalid response.") from e

        if not isinstance(body, dict):
            raise InferenceError("Disease detection service returned an invalid response.")
        if body.get("error"):
            log.error(f"Prediction service returned error: {body['error']}")
            raise InferenceError(str(body["error"]))

        disease = body.get("prediction") or body.get("predicted_disease")
        if not disease or disease == "Unknown":
            raise InferenceError("Could not detect disease. Please try with a clearer image.")

        try:
            confidence = float(body.get("confidence") or 0)
        except (TypeError, ValueError) as e:
            raise InferenceError("Disease detection service returned an invalid confidence.") from e

        severity = severity_for(confidence)
        log.info(f"Prediction for '{crop_name}': {disease} ({confidence:.3f}, {severity})")
        return Prediction(disease, confidence, severity, recommendations_for(disease, severity))


def get_disease_predictor() -> DiseasePredictor:
    """FastAPI dependency."""
    return DiseasePredictor()
