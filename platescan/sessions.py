"""
ONNX Model Sessions

Lazily created, cached inference sessions for the detector and the
character-grid OCR model.
"""

import asyncio
import logging
from concurrent.futures import Executor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import onnxruntime as ort

from .exceptions import ModelUnavailable

logger = logging.getLogger(__name__)

DETECTOR = 'detector'
OCR = 'ocr'


def select_providers(use_gpu: bool = True) -> List[str]:
    """Pick execution providers, preferring CUDA when requested and available."""
    available = ort.get_available_providers()
    if use_gpu and 'CUDAExecutionProvider' in available:
        return ['CUDAExecutionProvider', 'CPUExecutionProvider']
    return ['CPUExecutionProvider']


def create_onnx_session(model_path: str, providers: List[str]):
    """Open an ONNX Runtime session for a model file."""
    if not Path(model_path).exists():
        raise ModelUnavailable(f"ONNX model not found: {model_path}")

    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

    logger.info(f"Loading ONNX model from: {model_path} ({providers[0]})")
    return ort.InferenceSession(model_path, sess_options=options, providers=providers)


class OnnxModel:
    """
    A session bound to one named input and one named output.

    Input geometry is read from the session metadata; symbolic or missing
    dimensions fall back to the defaults given by the caller.
    """

    def __init__(
        self,
        session,
        input_name: Optional[str] = None,
        output_name: Optional[str] = None
    ):
        self.session = session

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        model_input = next((i for i in inputs if i.name == input_name), inputs[0])
        model_output = next((o for o in outputs if o.name == output_name), outputs[0])

        self.input_name = model_input.name
        self.input_shape = list(model_input.shape)
        self.input_type = model_input.type
        self.output_name = model_output.name

    @property
    def element_type(self):
        """numpy dtype the model expects as input."""
        return np.uint8 if 'uint8' in self.input_type else np.float32

    def input_geometry(
        self,
        default_width: int,
        default_height: int,
        default_channels: int = 3
    ) -> Tuple[int, int, int, bool]:
        """
        Returns:
            Tuple of (width, height, channels, channels_last).
        """
        dims = [d if isinstance(d, int) and d > 0 else None for d in self.input_shape]
        if len(dims) == 3:
            dims = [1] + dims

        if len(dims) != 4:
            return default_width, default_height, default_channels, False

        channels_last = dims[3] in (1, 3) and dims[1] not in (1, 3)
        if channels_last:
            height, width, channels = dims[1], dims[2], dims[3]
        else:
            channels, height, width = dims[1], dims[2], dims[3]

        return (
            width or default_width,
            height or default_height,
            channels or default_channels,
            channels_last
        )

    def run(self, batch: np.ndarray) -> np.ndarray:
        """Run inference on a batched input and return the named output."""
        outputs = self.session.run([self.output_name], {self.input_name: batch})
        return np.asarray(outputs[0])


class SessionCache:
    """
    Process-wide model sessions keyed by model name.

    Sessions are created on first use, once per key, and reused for every
    later scan. ``close`` drops them all.
    """

    def __init__(
        self,
        model_paths: Dict[str, str],
        io_names: Optional[Dict[str, Tuple[Optional[str], Optional[str]]]] = None,
        use_gpu: bool = True,
        executor: Optional[Executor] = None,
        session_factory: Callable = create_onnx_session
    ):
        self.model_paths = {k: v for k, v in model_paths.items() if v}
        self.io_names = io_names or {}
        self.use_gpu = use_gpu
        self._executor = executor
        self._session_factory = session_factory
        self._models: Dict[str, OnnxModel] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, key: str) -> OnnxModel:
        """Return the session for ``key``, creating it on first call."""
        model = self._models.get(key)
        if model is not None:
            return model

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key not in self._models:
                loop = asyncio.get_running_loop()
                self._models[key] = await loop.run_in_executor(
                    self._executor, self._load, key
                )
        return self._models[key]

    def _load(self, key: str) -> OnnxModel:
        path = self.model_paths.get(key)
        if not path:
            raise ModelUnavailable(f"No model configured for '{key}'")

        providers = select_providers(self.use_gpu)
        session = self._session_factory(path, providers)
        input_name, output_name = self.io_names.get(key, (None, None))

        model = OnnxModel(session, input_name=input_name, output_name=output_name)
        logger.info(
            f"Session '{key}' ready: input {model.input_name} {model.input_shape}, "
            f"output {model.output_name}"
        )
        return model

    def is_loaded(self, key: str) -> bool:
        return key in self._models

    def is_configured(self, key: str) -> bool:
        return key in self.model_paths

    def close(self) -> None:
        """Release all cached sessions."""
        if self._models:
            logger.info(f"Releasing sessions: {', '.join(self._models)}")
        self._models.clear()
        self._locks.clear()
