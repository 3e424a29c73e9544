"""Classify one input tensor with an ONNX image classifier.

Loads the model into a session on the requested backend, feeds an NHWC
array saved with numpy.save, and prints the input geometry, the top-k
classes, and (with --profile) the per-op timing breakdown.

    python run_classifier.py mobilenet.onnx cat.npy --labels labels.txt
    python run_classifier.py mobilenet_u8.onnx cat_u8.npy --quantize --mode 2
"""

import argparse
import logging
import time

import numpy as np

from predictor import Session, SessionConfig, strategy_from_mode
from predictor.labels import load_labels, top_k


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("model", help="path to the .onnx model")
    parser.add_argument("input", help="NHWC input array (.npy)")
    parser.add_argument("--labels", help="label file, one class per line")
    parser.add_argument("--mode", type=int, default=0,
                        help="backend mode: 0 CPU, 1 GPU, 2 accelerator, "
                             "3-7 CPU with 1/2/3/5/6 threads")
    parser.add_argument("--fp16", action="store_true",
                        help="allow reduced precision on the GPU backend")
    parser.add_argument("--batch", type=int, default=1)
    parser.add_argument("--quantize", action="store_true",
                        help="input is pre-quantized 8-bit data")
    parser.add_argument("--top-k", type=int, default=5)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--profile", action="store_true")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose or args.profile else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    config = SessionConfig(
        batch_size=args.batch,
        backend=strategy_from_mode(args.mode, precision_loss_allowed=args.fp16),
        quantize_input=args.quantize,
        verbose=args.verbose,
        profile=args.profile,
    )
    data = np.load(args.input)
    labels = load_labels(args.labels) if args.labels else None

    t0 = time.perf_counter()
    with Session(args.model, config) as session:
        create_ms = (time.perf_counter() - t0) * 1e3
        print(f"Backend: {session.backend} on {', '.join(session.providers)}"
              + (" (fallback)" if session.backend_fell_back else ""))
        print(f"Create: {create_ms:.1f}ms")

        t0 = time.perf_counter()
        predictions = session.predict(data).copy()
        predict_ms = (time.perf_counter() - t0) * 1e3

        print(f"Input:  {session.batch_size}x{session.height}x{session.width}x{session.channels}")
        print(f"Output: {session.output_length} classes")
        print(f"Predict: {predict_ms:.1f}ms")

        for b, classes in enumerate(top_k(predictions, labels, session.batch_size, args.top_k)):
            print(f"\nBatch item {b}:")
            for c in classes:
                print(f"  {c.probability:8.5f}  [{c.index:>4}] {c.label}")

        if session.last_profile is not None:
            print()
            print(session.last_profile)


if __name__ == "__main__":
    main()
