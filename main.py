import argparse
import json
import os
import random
import sys

import matplotlib.pyplot as plt

from compression_analyzer import CompressionAnalyzer, compare_transforms, format_comparison
from external_compressors import COMPRESSORS, DEFAULT_COMPRESSOR, get_compressor
from pattern_analyzer import StatisticalAnalyzer
from transform_errors import TransformError
from transform_logger import TransformLogger
from transform_pipeline import CompressionPipeline, bytes_to_text, pack_artifact
from transform_selector import SELECTORS, get_selector


RESULTS_DIR = "compression_results"
RESULTS_FILE = os.path.join(RESULTS_DIR, "compression_history.json")


def main(argv=None):
    """
    Main entry point for the adaptive transform compressor.
    """
    parser = argparse.ArgumentParser(
        description="Adaptive reversible-transform compression pipeline"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    compress_parser = subparsers.add_parser("compress", help="Compress a file")
    compress_parser.add_argument("input", help="Input file to compress")
    compress_parser.add_argument("output", help="Output file path")
    compress_parser.add_argument("--max-cycles", type=int, default=CompressionPipeline.DEFAULT_MAX_CYCLES,
                                 help="Maximum number of transform cycles")
    compress_parser.add_argument("--compressor", choices=sorted(COMPRESSORS), default=DEFAULT_COMPRESSOR,
                                 help="External compressor applied after each transform")
    compress_parser.add_argument("--selector", choices=sorted(SELECTORS), default="analysis",
                                 help="Transform selection strategy")
    compress_parser.add_argument("--log", help="Append the run log to this file")
    compress_parser.add_argument("--progress", action="store_true", help="Show a progress bar")

    decompress_parser = subparsers.add_parser("decompress", help="Decompress a file")
    decompress_parser.add_argument("input", help="Input file to decompress")
    decompress_parser.add_argument("output", help="Output file path")
    decompress_parser.add_argument("--log", help="Append the run log to this file")

    analyze_parser = subparsers.add_parser("analyze", help="Print the statistics of a file")
    analyze_parser.add_argument("input", help="File to analyze")

    compare_parser = subparsers.add_parser("compare", help="Compare every transform on a file")
    compare_parser.add_argument("input", help="File to compare transforms on")
    compare_parser.add_argument("--compressor", choices=sorted(COMPRESSORS), default=DEFAULT_COMPRESSOR)
    compare_parser.add_argument("--output-dir", help="Directory to save the comparison plot")

    explore_parser = subparsers.add_parser("explore", help="Random transform search on a file")
    explore_parser.add_argument("input", help="File to explore")
    explore_parser.add_argument("--seconds", type=float, default=5.0, help="Time budget")
    explore_parser.add_argument("--seed", type=int, help="Random seed")
    explore_parser.add_argument("--max-cycles", type=int, help="Maximum number of attempted cycles")

    history_parser = subparsers.add_parser("history", help="Summarize recorded compression runs")
    history_parser.add_argument("--results-file", default=RESULTS_FILE,
                                help="Path to compression results file")
    history_parser.add_argument("--output-dir", default="analysis_output",
                                help="Directory to save analysis plots")

    args = parser.parse_args(argv)

    if args.command == "compress":
        return compress_file(args.input, args.output, args.max_cycles, args.compressor,
                             args.selector, args.log, args.progress)
    elif args.command == "decompress":
        return decompress_file(args.input, args.output, args.log)
    elif args.command == "analyze":
        return analyze_file(args.input)
    elif args.command == "compare":
        return compare_file(args.input, args.compressor, args.output_dir)
    elif args.command == "explore":
        return explore_file(args.input, args.seconds, args.seed, args.max_cycles)
    elif args.command == "history":
        return analyze_results(args.results_file, args.output_dir)
    parser.print_help()
    return None


def _read_input(path):
    with open(path, "rb") as f:
        return f.read()


def _print_run_stats(stats):
    print("\nCompression Statistics:")
    print(f"  Original size: {stats['original_size']} bytes")
    print(f"  Compressed size: {stats['compressed_size']} bytes")
    print(f"  Compression ratio: {stats['ratio']:.4f}")
    print(f"  Space saving: {stats['percent_reduction']:.2f}%")
    print(f"  Elapsed time: {stats['elapsed_time']:.4f} seconds")
    print(f"  Throughput: {stats['throughput_mb_per_sec']:.2f} MB/s")
    print(f"  Cycles: {stats['cycles']} (stopped: {stats['stop_reason']})")
    print(f"  Transform chain: {' -> '.join(stats['chain']) or '(none)'}")


def compress_file(input_path, output_path, max_cycles=None, compressor="gzip",
                  selector="analysis", log_path=None, progress=False):
    print(f"Compressing {input_path} to {output_path}...")
    with TransformLogger() as logger:
        if log_path:
            logger.start(log_path)
        pipeline = CompressionPipeline(
            compressor=get_compressor(compressor),
            selector=get_selector(selector),
            logger=logger,
            show_progress=progress,
        )
        try:
            stats = pipeline.compress_file(input_path, output_path, max_cycles)
        except (OSError, ValueError, TransformError) as e:
            print(f"Error during compression: {e}")
            sys.exit(1)

    _print_run_stats(stats)
    _record_result(input_path, stats)
    print("\nCompression completed successfully.")
    return stats


def decompress_file(input_path, output_path, log_path=None):
    print(f"Decompressing {input_path} to {output_path}...")
    with TransformLogger() as logger:
        if log_path:
            logger.start(log_path)
        try:
            stats = CompressionPipeline(logger=logger).decompress_file(input_path, output_path)
        except (OSError, TransformError) as e:
            print(f"Error during decompression: {e}")
            sys.exit(1)

    print("\nDecompression Statistics:")
    print(f"  Compressed size: {stats['compressed_size']} bytes")
    print(f"  Decompressed size: {stats['decompressed_size']} bytes")
    print(f"  Elapsed time: {stats['elapsed_time']:.4f} seconds")
    print(f"  Throughput: {stats['throughput_mb_per_sec']:.2f} MB/s")
    print("\nDecompression completed successfully.")
    return stats


def analyze_file(input_path):
    report = StatisticalAnalyzer().analyze(bytes_to_text(_read_input(input_path)))
    print(f"Analysis of {input_path}:")
    for line in report.describe():
        print(f"  {line}")
    return report


def compare_file(input_path, compressor="gzip", output_dir=None):
    rows = compare_transforms(_read_input(input_path), compressor=get_compressor(compressor),
                              logger=TransformLogger(echo=False))
    print(f"Single-transform comparison of {input_path} ({compressor}):")
    for line in format_comparison(rows):
        print(f"  {line}")

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        fig = CompressionAnalyzer().plot_transform_comparison(rows)
        if fig:
            plot_path = os.path.join(output_dir, "transform_comparison.png")
            fig.savefig(plot_path)
            plt.close(fig)
            print(f"Saved comparison plot to {plot_path}")
    return rows


def explore_file(input_path, seconds=5.0, seed=None, max_cycles=None):
    data = _read_input(input_path)
    pipeline = CompressionPipeline()
    artifact = pipeline.explore(data, seconds, rng=random.Random(seed), max_cycles=max_cycles)
    _print_run_stats(pipeline.last_stats)
    print(f"  Packed size: {len(pack_artifact(artifact))} bytes")
    return pipeline.last_stats


def _record_result(input_path, stats):
    os.makedirs(RESULTS_DIR, exist_ok=True)
    analyzer = CompressionAnalyzer()
    if os.path.exists(RESULTS_FILE):
        analyzer.load_results(RESULTS_FILE)
    analyzer.add_result(input_path, stats)
    analyzer.save_results(RESULTS_FILE)


def analyze_results(results_file, output_dir):
    print(f"Analyzing compression results from {results_file}...")
    analyzer = CompressionAnalyzer()
    analyzer.load_results(results_file)
    os.makedirs(output_dir, exist_ok=True)

    summary = analyzer.get_summary_stats()
    print("\nSummary Statistics:")
    for key, value in summary.items():
        print(f"  {key}: {value}")
    with open(os.path.join(output_dir, "summary.json"), "w") as f:
        json.dump(summary, f, indent=2)

    plots = [
        ("cycle_history", analyzer.plot_cycle_history),
        ("codec_usage", analyzer.plot_codec_usage),
    ]
    for name, plot_func in plots:
        fig = plot_func()
        if fig:
            fig.savefig(os.path.join(output_dir, f"{name}.png"))
            plt.close(fig)
            print(f"Saved {name} plot to {output_dir}/{name}.png")
    print("\nAnalysis completed successfully.")
    return summary


if __name__ == "__main__":
    main()
