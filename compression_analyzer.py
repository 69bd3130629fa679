import base64
import json
import os
import time
from collections import defaultdict

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from external_compressors import get_compressor
from transform_errors import MalformedFrameError, UnsupportedInputError
from transform_logger import TransformLogger
from transform_methods import TransformId, default_registry
from transform_pipeline import bytes_to_text, frame_bytes_to_text, text_to_bytes


BASELINE_NAME = "NO_TRANSFORM"


def compare_transforms(data, compressor=None, registry=None, logger=None, show_progress=False):
    """
    Apply every registered transform once to ``data`` and compress the result.

    Args:
        data (bytes): Input to measure
        compressor (ExternalCompressor): Compressor applied after each transform
        registry (TransformRegistry): Transforms to try
        logger (TransformLogger): Diagnostics sink
        show_progress (bool): Display a tqdm bar over the transforms

    Returns:
        list: One dict per transform plus the untransformed baseline,
        smallest compressed size first
    """
    compressor = compressor if compressor is not None else get_compressor()
    registry = registry if registry is not None else default_registry()
    logger = logger if logger is not None else TransformLogger()

    data = bytes(data)
    text = bytes_to_text(data)
    baseline = compressor.compress(data)
    rows = [_comparison_row(BASELINE_NAME, len(text), baseline, len(data), len(baseline), True)]

    methods = [m for m in registry if m.type_id != TransformId.IDENTITY]
    for method in tqdm(methods, desc="Transforms", unit="transform", disable=not show_progress):
        try:
            transformed, params = method.encode(text)
        except UnsupportedInputError as e:
            logger.log(f"{method.name}: skipped ({e})")
            continue

        frame = text_to_bytes(transformed)
        compressed = compressor.compress(frame)
        try:
            reversible = method.decode(frame_bytes_to_text(frame), params) == text
        except MalformedFrameError as e:
            logger.log(f"{method.name}: round trip failed ({e})")
            reversible = False

        rows.append(_comparison_row(method.name, len(transformed), compressed, len(data), len(baseline), reversible))
        logger.log(f"{method.name}: {len(data)} -> {len(compressed)} bytes")

    # stable, so the baseline stays ahead of an equally sized transform
    rows.sort(key=lambda row: row['compressed_size'])
    return rows


def _comparison_row(name, transformed_length, compressed, original_size, baseline_size, reversible):
    compressed_size = len(compressed)
    return {
        'transform': name,
        'transformed_length': transformed_length,
        'compressed_size': compressed_size,
        'base64_size': len(base64.b64encode(compressed)),
        'ratio': compressed_size / original_size if original_size else 1.0,
        'gain': baseline_size - compressed_size,
        'gain_percent': (baseline_size - compressed_size) * 100.0 / baseline_size if baseline_size else 0.0,
        'reversible': reversible,
    }


def format_comparison(rows):
    """Render compare_transforms() output as table lines."""
    lines = [f"{'Transform':<16}{'Length':>10}{'Compressed':>12}{'Base64':>10}{'Ratio':>9}{'Gain':>10}  OK"]
    for row in rows:
        lines.append(
            f"{row['transform']:<16}{row['transformed_length']:>10}{row['compressed_size']:>12}"
            f"{row['base64_size']:>10}{row['ratio']:>9.4f}{row['gain_percent']:>9.2f}%  "
            f"{'yes' if row['reversible'] else 'NO'}"
        )
    return lines


class CompressionAnalyzer:
    """
    Keeps the statistics of past pipeline runs, summarizes them and draws
    them with matplotlib. Results are keyed by file name; a newer result
    for the same file replaces the older one.
    """

    def __init__(self):
        self.results = []
        self.filename_map = {}  # filename -> index in results

    def add_result(self, filename, stats):
        """
        Record the statistics of one run.

        Args:
            filename (str): Name of the compressed file
            stats (dict): Statistics returned by the pipeline
        """
        base_filename = os.path.basename(filename)
        stats = dict(stats)
        stats['filename'] = base_filename
        stats['extension'] = os.path.splitext(base_filename)[1].lower() or 'unknown'
        stats['timestamp'] = time.time()
        stats['size_label'] = self._format_file_size(stats.get('original_size', 0))

        if base_filename in self.filename_map:
            print(f"Replacing previous result for '{base_filename}'")
            self.results[self.filename_map[base_filename]] = stats
        else:
            self.results.append(stats)
            self.filename_map[base_filename] = len(self.results) - 1

    def save_results(self, filename):
        with open(filename, 'w') as f:
            json.dump(self.results, f, indent=2)

    def load_results(self, filename):
        """
        Load results from a JSON file, keeping only the most recent entry
        for each filename.

        Args:
            filename (str): Path to load the results from

        Returns:
            int: Number of results loaded
        """
        try:
            with open(filename, 'r') as f:
                all_results = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"Error loading results: {e}")
            self.clear_results()
            return 0

        latest = {}
        for result in all_results:
            name = result.get('filename', "unknown")
            if name not in latest or result.get('timestamp', 0) > latest[name].get('timestamp', 0):
                latest[name] = result

        self.results = list(latest.values())
        self.filename_map = {name: i for i, name in enumerate(latest)}

        duplicates_removed = len(all_results) - len(self.results)
        if duplicates_removed > 0:
            print(f"Loaded {len(self.results)} unique results (removed {duplicates_removed} duplicates)")
        else:
            print(f"Loaded {len(self.results)} results")
        return len(self.results)

    def clear_results(self):
        self.results = []
        self.filename_map = {}

    def get_summary_stats(self):
        """
        Get summary statistics for all results

        Returns:
            dict: Summary statistics
        """
        if not self.results:
            return {
                'total_files': 0,
                'total_original_size': 0,
                'total_compressed_size': 0,
                'average_ratio': 0,
                'average_percent_reduction': 0,
                'average_cycles': 0,
                'average_throughput': 0,
                'stop_reasons': {},
                'overall_ratio': 1.0,
                'overall_percent_reduction': 0.0,
            }

        count = len(self.results)
        stop_reasons = defaultdict(int)
        for result in self.results:
            stop_reasons[result.get('stop_reason', 'unknown')] += 1

        total_original_size = sum(r.get('original_size', 0) for r in self.results)
        total_compressed_size = sum(r.get('compressed_size', 0) for r in self.results)

        summary = {
            'total_files': count,
            'total_original_size': total_original_size,
            'total_compressed_size': total_compressed_size,
            'average_ratio': sum(r.get('ratio', 0) for r in self.results) / count,
            'average_percent_reduction': sum(r.get('percent_reduction', 0) for r in self.results) / count,
            'average_cycles': sum(r.get('cycles', 0) for r in self.results) / count,
            'average_throughput': sum(r.get('throughput_mb_per_sec', 0) for r in self.results) / count,
            'stop_reasons': dict(stop_reasons),
        }

        if total_original_size > 0:
            summary['overall_ratio'] = total_compressed_size / total_original_size
            summary['overall_percent_reduction'] = (1 - summary['overall_ratio']) * 100
        else:
            summary['overall_ratio'] = 1.0
            summary['overall_percent_reduction'] = 0.0

        summary['total_original_size_formatted'] = self._format_file_size(total_original_size)
        summary['total_compressed_size_formatted'] = self._format_file_size(total_compressed_size)
        return summary

    def get_codec_usage_stats(self):
        """
        Count how often each transform appears in the kept chains.

        Returns:
            dict: Usage counts, percentages and per-extension counts
        """
        if not self.results:
            return {}

        counts = defaultdict(int)
        by_extension = defaultdict(lambda: defaultdict(int))
        for result in self.results:
            ext = result.get('extension', 'unknown')
            for name, used in result.get('transform_usage', {}).items():
                counts[name] += used
                by_extension[ext][name] += used

        total = sum(counts.values())
        return {
            'transform_counts': dict(counts),
            'transform_percentages': {name: used * 100.0 / total for name, used in counts.items()} if total else {},
            'total_transforms': total,
            'file_type_usage': {ext: dict(names) for ext, names in by_extension.items()},
        }

    def plot_cycle_history(self, figsize=(12, 7)):
        """
        Plot the compressed size after every cycle, one line per file.

        Returns:
            matplotlib.figure.Figure: The figure, or None without results
        """
        runs = [r for r in self.results if r.get('size_history')]
        if not runs:
            return None

        fig, ax = plt.subplots(figsize=figsize)
        for r in runs:
            sizes = r['size_history']
            cycles = np.arange(1, len(sizes) + 1)
            line, = ax.plot(cycles, sizes, marker='o', label=r.get('filename', 'unknown'))

            # rejected cycles as hollow markers
            accepted = r.get('accepted_history', [True] * len(sizes))
            rejected = [i for i, ok in enumerate(accepted) if not ok]
            if rejected:
                ax.scatter(cycles[rejected], [sizes[i] for i in rejected], s=90,
                           facecolors='none', edgecolors=line.get_color())

        ax.set_xlabel('Cycle')
        ax.set_ylabel('Compressed size (bytes)')
        ax.set_title('Compressed Size per Cycle')
        ax.xaxis.get_major_locator().set_params(integer=True)
        ax.grid(linestyle='--', alpha=0.7)
        ax.legend(loc='upper right', fontsize=8)
        fig.tight_layout()
        return fig

    def plot_codec_usage(self, figsize=(12, 7)):
        usage = self.get_codec_usage_stats()
        if not usage or not usage['total_transforms']:
            return None

        names = sorted(usage['transform_counts'], key=usage['transform_counts'].get, reverse=True)
        counts = [usage['transform_counts'][n] for n in names]

        fig, ax = plt.subplots(figsize=figsize)
        bars = ax.bar(names, counts, color=plt.cm.tab10.colors[:len(names)], alpha=0.8)
        for bar, name in zip(bars, names):
            ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height(),
                    f"{usage['transform_percentages'][name]:.1f}%",
                    ha='center', va='bottom', fontsize=9)

        ax.set_ylabel('Times applied')
        ax.set_title('Transform Usage Across Runs')
        ax.grid(axis='y', linestyle='--', alpha=0.7)
        fig.tight_layout()
        return fig

    def plot_transform_comparison(self, rows, figsize=(12, 7)):
        """
        Bar chart of a compare_transforms() result.

        Args:
            rows (list): Output of compare_transforms
            figsize (tuple): Figure size (width, height)

        Returns:
            matplotlib.figure.Figure: The figure, or None for no rows
        """
        if not rows:
            return None

        names = [row['transform'] for row in rows]
        sizes = [row['compressed_size'] for row in rows]
        baseline = next((row['compressed_size'] for row in rows if row['transform'] == BASELINE_NAME), None)

        fig, ax = plt.subplots(figsize=figsize)
        colors = ['tab:green' if row['gain'] > 0 else 'tab:gray' for row in rows]
        ax.bar(names, sizes, color=colors, alpha=0.8)
        if baseline is not None:
            ax.axhline(y=baseline, color='red', linestyle='--', alpha=0.7, label='No transform')
            ax.legend(loc='upper left')

        ax.set_ylabel('Compressed size (bytes)')
        ax.set_title('Single-Transform Comparison')
        ax.grid(axis='y', linestyle='--', alpha=0.7)
        plt.setp(ax.get_xticklabels(), rotation=30, ha='right')
        fig.tight_layout()
        return fig

    def _format_file_size(self, size_bytes):
        """
        Format file size in human-readable format

        Args:
            size_bytes (int): Size in bytes

        Returns:
            str: Formatted size string
        """
        if size_bytes < 1024:
            return f"{size_bytes} B"
        elif size_bytes < 1024 * 1024:
            return f"{size_bytes / 1024:.1f} KB"
        elif size_bytes < 1024 * 1024 * 1024:
            return f"{size_bytes / (1024 * 1024):.1f} MB"
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
