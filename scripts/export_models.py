#!/usr/bin/env python3
"""
Prepare models for the plate scanner.

This script:
1. Exports a YOLO plate detector checkpoint to ONNX
2. Downloads the EasyOCR English model used by the text engine

The scanner applies a logistic to the score channels of the detector output,
so the exported detector must emit raw logits. Ultralytics heads emit
probabilities ([1, 4 + classes, boxes], already sigmoided); the export step
appends a logit transform to the score channels so the saved model matches.

The character-grid OCR model is expected as a ready-made ONNX file.
"""

import argparse
import sys
from pathlib import Path

MODELS_DIR = Path(__file__).parent.parent / 'models'

BOX_CHANNELS = 4
# int64 max, "to the end" for Slice
SLICE_END = 9223372036854775807


def to_logit_head(model, channel_axis: int = 1, eps: float = 1e-6):
    """
    Rewrite a probability-scored detector head to emit logits.

    The graph output keeps its name and shape; channels after the first four
    become ``log(p / (1 - p))`` with ``p`` clipped to ``[eps, 1 - eps]``.

    Args:
        model: Loaded ``onnx.ModelProto``; modified in place.
        channel_axis: Axis holding the per-box channels.
        eps: Clip margin keeping the logit finite.

    Returns:
        The same model.
    """
    import numpy as np
    from onnx import helper, numpy_helper

    graph = model.graph
    output_name = graph.output[0].name
    probs = f"{output_name}_probs"

    for node in graph.node:
        for i, name in enumerate(node.output):
            if name == output_name:
                node.output[i] = probs
        for i, name in enumerate(node.input):
            if name == output_name:
                node.input[i] = probs

    def const(name, value, dtype):
        return numpy_helper.from_array(np.array(value, dtype=dtype), name=f"logit_head_{name}")

    constants = [
        const('zero', [0], np.int64),
        const('box_end', [BOX_CHANNELS], np.int64),
        const('end', [SLICE_END], np.int64),
        const('axis', [channel_axis], np.int64),
        const('low', eps, np.float32),
        const('high', 1.0 - eps, np.float32),
        const('one', 1.0, np.float32),
    ]
    graph.initializer.extend(constants)

    def c(name):
        return f"logit_head_{name}"

    graph.node.extend([
        helper.make_node('Slice', [probs, c('zero'), c('box_end'), c('axis')], [c('boxes')]),
        helper.make_node('Slice', [probs, c('box_end'), c('end'), c('axis')], [c('scores')]),
        helper.make_node('Clip', [c('scores'), c('low'), c('high')], [c('clipped')]),
        helper.make_node('Sub', [c('one'), c('clipped')], [c('rest')]),
        helper.make_node('Div', [c('clipped'), c('rest')], [c('odds')]),
        helper.make_node('Log', [c('odds')], [c('logits')]),
        helper.make_node('Concat', [c('boxes'), c('logits')], [output_name], axis=channel_axis),
    ])
    return model


def export_detector(weights: str, imgsz: int) -> bool:
    """Export YOLO weights to models/plate_detector.onnx with a logit head."""
    print(f"Exporting detector {weights} to ONNX ({imgsz}x{imgsz})...")

    import onnx
    from ultralytics import YOLO

    model = YOLO(weights)
    exported = Path(model.export(format='onnx', imgsz=imgsz, dynamic=False, simplify=True))

    detector = to_logit_head(onnx.load(str(exported)))
    onnx.checker.check_model(detector)

    MODELS_DIR.mkdir(parents=True, exist_ok=True)
    target = MODELS_DIR / 'plate_detector.onnx'
    onnx.save(detector, str(target))

    print(f"Detector exported: {target}")
    return True


def download_ocr_models() -> bool:
    """Download EasyOCR models for English."""
    print("\nDownloading EasyOCR models (English only)...")

    import easyocr

    # Models are fetched on first reader construction
    easyocr.Reader(['en'], gpu=False, verbose=True)

    print("EasyOCR English models downloaded successfully")
    return True


def main():
    parser = argparse.ArgumentParser(description='Prepare plate scanner models')
    parser.add_argument('--weights', help='YOLO plate detector checkpoint (.pt)')
    parser.add_argument('--imgsz', type=int, default=640, help='Detector input size')
    parser.add_argument('--skip-ocr', action='store_true', help='Do not download EasyOCR models')
    args = parser.parse_args()

    print("=" * 60)
    print("Plate Scanner - Model Preparation")
    print("=" * 60)

    success = True

    if args.weights:
        try:
            export_detector(args.weights, args.imgsz)
        except Exception as e:
            print(f"Error exporting detector: {e}")
            success = False

    if not args.skip_ocr:
        try:
            download_ocr_models()
        except Exception as e:
            print(f"Error downloading OCR models: {e}")
            success = False

    print("\n" + "=" * 60)
    if success:
        print("Models ready.")
    else:
        print("Some steps failed. Check errors above.")
    print("=" * 60)

    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())
