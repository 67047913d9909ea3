#!/usr/bin/env python3
"""Live webcam tap recognition demo.

Usage:
    python examples/demo_webcam.py [--camera 0] [--config pipeline.yml] [--no-display]
"""

import argparse
import sys
from typing import Optional

import cv2

from tap_engine import HandDetector, PipelineConfig, TapPipeline
from tap_engine.types import Event

# How long a tap label stays on screen, in ms
LABEL_HOLD_MS = 600


def draw_overlay(frame, pipeline: TapPipeline, last_tap: Optional[Event]):
    """Draw pipeline status and the most recent tap on the frame."""
    status = pipeline.status
    cv2.putText(
        frame,
        f"FPS: {status.fps:.1f} | Latency: {status.avg_processing_ms:.1f}ms | Hands: {status.hand_count}",
        (10, 30),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.7,
        (0, 255, 0),
        2,
    )

    current = pipeline.current_frame
    if last_tap is None or current is None or current.timestamp - last_tap.timestamp > LABEL_HOLD_MS:
        return frame

    label = f"{last_tap.data.get('finger', '?')} {last_tap.data.get('phalanx_name', '')}".strip()
    cv2.putText(
        frame, f"TAP {label}", (10, 70),
        cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 255, 255), 2,
    )
    return frame


def main():
    parser = argparse.ArgumentParser(description="tap-engine webcam demo")
    parser.add_argument("--camera", type=int, default=0, help="Camera index")
    parser.add_argument("--config", default=None, help="Pipeline YAML config")
    parser.add_argument("--no-display", action="store_true", help="Run headless")
    args = parser.parse_args()

    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        print(f"Error: Cannot open camera {args.camera}")
        sys.exit(1)

    config = PipelineConfig.from_yaml(args.config) if args.config else PipelineConfig(coordinate_system="selfie")

    print("Starting tap-engine...")
    print("Press 'q' to quit\n")

    last_tap = None
    with TapPipeline.from_config(config) as pipeline, HandDetector() as detector:
        while True:
            ret, frame = cap.read()
            if not ret:
                break

            frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            for event in pipeline.process_results(detector.detect(frame_rgb)):
                print(f"  👆 {event.type}: {event.data.get('finger', '')} {event.data.get('phalanx_name', '')}")
                last_tap = event

            if not args.no_display:
                frame = draw_overlay(frame, pipeline, last_tap)
                cv2.imshow("tap-engine", frame)

                if cv2.waitKey(1) & 0xFF == ord("q"):
                    break

    cap.release()
    cv2.destroyAllWindows()

    status = pipeline.status
    print(f"\nProcessed {status.frame_count} frames, {status.total_events} taps")


if __name__ == "__main__":
    main()
