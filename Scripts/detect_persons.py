from __future__ import annotations

import argparse
import logging
import statistics
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List

import cv2
import numpy as np
from tqdm import tqdm

from ssd_kit import DetectionResult, PipelineConfig, load_class_names, load_pipeline, load_pipeline_config, resolve_class_id
from ssd_kit.log import setup_logging


logger = logging.getLogger("detect_persons")


@dataclass(frozen=True)
class TimingSummary:
    n: int
    failed: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    # Linear interpolation between closest ranks.
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def summarize(results: List[DetectionResult]) -> TimingSummary:
    ms = sorted(r.inference_time_ms for r in results)
    return TimingSummary(
        n=len(ms),
        failed=sum(1 for r in results if not r.ok),
        mean_ms=float(statistics.fmean(ms)) if ms else 0.0,
        p50_ms=_percentile(ms, 50.0) if ms else 0.0,
        p90_ms=_percentile(ms, 90.0) if ms else 0.0,
        p95_ms=_percentile(ms, 95.0) if ms else 0.0,
    )


def _print_result(tag: str, result: DetectionResult) -> None:
    status = "ok" if result.ok else f"error: {result.error}"
    print(f"{tag} {result.image_width}x{result.image_height} {result.inference_time_ms:.1f} ms, {result.count} found ({status})")
    for det in result.detections:
        print("  ", f"{det.confidence:.3f}", tuple(round(v, 1) for v in det.as_xyxy()))


def build_config(args: argparse.Namespace) -> PipelineConfig:
    if args.config:
        cfg = load_pipeline_config(Path(args.config))
    else:
        if args.target_class is None and args.target_label is None:
            raise ValueError("Pass --target-class, --target-label (with --labels) or --config.")
        cfg = PipelineConfig(target_class_id=0 if args.target_class is None else int(args.target_class))

    overrides = {}
    if args.target_label is not None:
        if not args.labels:
            raise ValueError("--target-label requires --labels")
        overrides["target_class_id"] = resolve_class_id(load_class_names(args.labels), args.target_label)
    elif args.target_class is not None:
        overrides["target_class_id"] = int(args.target_class)
    if args.imgsz is not None:
        overrides["model_input_size"] = int(args.imgsz)
    if args.conf is not None:
        overrides["confidence_threshold"] = float(args.conf)
    if args.iou is not None:
        overrides["nms_iou_threshold"] = float(args.iou)
    if args.min_box is not None:
        overrides["min_box_pixels"] = float(args.min_box)
    if args.accelerator is not None:
        overrides["accelerator"] = args.accelerator
    return replace(cfg, **overrides) if overrides else cfg


def main() -> int:
    parser = argparse.ArgumentParser(description="Run single-class SSD detection on an image, video or webcam.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--model", default="models/ssd_mobilenet_v1.onnx", help="Path to an SSD model (.onnx/.pt).")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument("--config", default=None, help="Pipeline config JSON.")
    parser.add_argument("--labels", default=None, help="Label map used with --target-label.")
    parser.add_argument("--target-class", type=int, default=None, help="Class id to keep.")
    parser.add_argument("--target-label", default=None, help="Class label to keep (e.g., person).")
    parser.add_argument("--imgsz", type=int, default=None, help="Model input size (square).")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--min-box", type=float, default=None, help="Minimum box width/height in pixels.")
    parser.add_argument("--accelerator", choices=("cpu", "gpu", "auto"), default=None)
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame for video/webcam.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N processed frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    parser.add_argument("--log-file", default=None, help="Optional log file.")
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)
    if args.every < 1:
        raise ValueError("--every must be >= 1")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    # OpenCV decodes to BGR.
    cfg = replace(build_config(args), channel_order="bgr")
    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    pipeline = load_pipeline(args.model, cfg, backend=args.backend, onnx_providers=onnx_providers)

    with pipeline:
        if args.image is not None:
            img = cv2.imread(args.image)
            if img is None:
                raise FileNotFoundError(f"Could not read image at path: {args.image}")
            _print_result(Path(args.image).name, pipeline(img))
            return 0

        if args.video is not None:
            cap = cv2.VideoCapture(args.video)
            if not cap.isOpened():
                raise FileNotFoundError(f"Could not open video: {args.video}")
        else:
            cap = cv2.VideoCapture(int(args.webcam))
            if not cap.isOpened():
                raise RuntimeError(f"Could not open webcam index: {args.webcam}")

        total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT)) if args.video is not None else 0
        pbar = tqdm(total=total or None, unit="frame", desc="detect")
        results: List[DetectionResult] = []
        frame_idx = 0
        try:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break
                frame_idx += 1
                pbar.update(1)
                if (frame_idx - 1) % args.every != 0:
                    continue

                result = pipeline(frame)
                results.append(result)
                if result.count or not result.ok:
                    pbar.write(f"frame {frame_idx}: {result.count} found, {result.inference_time_ms:.1f} ms")

                if args.max_frames and len(results) >= args.max_frames:
                    break
        finally:
            pbar.close()
            cap.release()

    summary = summarize(results)
    logger.info(
        "Processed %d frames (%d failed): mean %.1f ms, p50 %.1f ms, p90 %.1f ms, p95 %.1f ms",
        summary.n,
        summary.failed,
        summary.mean_ms,
        summary.p50_ms,
        summary.p90_ms,
        summary.p95_ms,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
