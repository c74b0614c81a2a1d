from pathlib import Path
from typing import Dict, Optional

import torch
from ultralytics import YOLO

from visual_clutter.utils.failures import ConfigError
from visual_clutter.utils.logger import Logger


def select_device(preferred: Optional[str] = None) -> str:
    """Use the configured device, else CUDA when available, else CPU."""
    if preferred:
        return preferred
    return "cuda" if torch.cuda.is_available() else "cpu"


class ModelLoader:
    """Loads and caches YOLO models with GPU/CPU selection."""

    def __init__(self, device: Optional[str] = None):
        self.logger = Logger("ModelLoader")
        self.device = select_device(device)
        self.model_cache: Dict[str, YOLO] = {}

    def load_model(self, model_path: str) -> YOLO:
        """
        Load a YOLO model from a local file, reusing a cached instance.

        Raises:
            ConfigError: File missing or not loadable as a YOLO model.
        """
        if model_path in self.model_cache:
            self.logger.info(f"Using cached model: {model_path}")
            return self.model_cache[model_path]

        if not Path(model_path).exists():
            raise ConfigError(f"Model file not found: {model_path}")

        try:
            model = YOLO(model_path)
            model.to(self.device)
        except Exception as e:
            raise ConfigError(f"Error loading model {model_path}: {e}") from e

        self.model_cache[model_path] = model
        self.logger.info(f"Model loaded on {self.device}: {model_path} (task: {getattr(model, 'task', '?')})")
        return model

    def unload_model(self, model_path: str) -> bool:
        """Remove model from cache to free memory."""
        if model_path in self.model_cache:
            del self.model_cache[model_path]
            self.logger.info(f"Model unloaded from cache: {model_path}")
            return True
        return False
