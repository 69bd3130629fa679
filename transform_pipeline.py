import hashlib
import struct
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from tqdm import tqdm

from external_compressors import get_compressor, get_compressor_by_id
from pattern_analyzer import StatisticalAnalyzer
from transform_errors import (
    ArtifactFormatError,
    MalformedFrameError,
    UnsupportedInputError,
)
from transform_logger import TransformLogger
from transform_methods import TransformId, default_registry
from transform_selector import AnalysisSelector, RandomSelector


# -------------------------------------------------------------------
# Byte <-> text mapping
# -------------------------------------------------------------------

def bytes_to_text(data: bytes) -> str:
    """One symbol per byte, so any byte string maps to text and back."""
    return data.decode("latin-1")


def text_to_bytes(text: str) -> bytes:
    # transforms may emit lone surrogates as control code points
    return text.encode("utf-8", "surrogatepass")


def frame_bytes_to_text(data: bytes) -> str:
    try:
        return data.decode("utf-8", "surrogatepass")
    except UnicodeDecodeError as e:
        raise MalformedFrameError(f"Decompressed frame is not valid UTF-8: {e}") from e


def text_to_input_bytes(text: str) -> bytes:
    try:
        return text.encode("latin-1")
    except UnicodeEncodeError as e:
        raise MalformedFrameError(f"Decoded text holds a symbol above 255: {e}") from e


# -------------------------------------------------------------------
# Data model
# -------------------------------------------------------------------

@dataclass(frozen=True)
class ChainEntry:
    """One applied transform and the params its decode needs."""
    transform_id: TransformId
    params: dict = field(default_factory=dict)

    @property
    def name(self):
        return TransformId(self.transform_id).name


@dataclass(frozen=True)
class CycleRecord:
    cycle: int
    transform: str
    input_size: int
    transformed_size: int
    compressed_size: int
    ratio: float
    accepted: bool = False
    fallback: bool = False


@dataclass(frozen=True)
class CompressionArtifact:
    """
    Final compressed bytes plus the ordered chain of transforms that
    produced them. The chain is in order of application.
    """
    compressed: bytes
    chain: Tuple[ChainEntry, ...]
    original_size: int
    checksum: bytes
    compressor: str
    history: Tuple[CycleRecord, ...] = ()

    @property
    def ratio(self):
        if self.original_size == 0:
            return 1.0
        return len(self.compressed) / self.original_size


@dataclass
class PipelineState:
    """Mutable state of a single run. Discarded once the artifact is built."""
    buffer: bytes
    best_size: Optional[int] = None
    cycle: int = 0
    history: List[CycleRecord] = field(default_factory=list)
    chain: List[ChainEntry] = field(default_factory=list)

    def accept(self, record, entry, compressed):
        self.history.append(replace(record, accepted=True))
        self.chain.append(entry)
        self.buffer = compressed
        self.best_size = len(compressed)

    def reject(self, record):
        self.history.append(record)


class CompressionPipeline:
    """
    Repeats analyze -> select -> transform -> compress while every cycle
    strictly shrinks the compressed size. Each cycle feeds its compressed
    output to the next one; the chain of applied transforms is recorded
    so the whole run can be undone.
    """

    MAGIC_NUMBER = b'PTRN'
    FORMAT_VERSION = 1

    DEFAULT_MAX_CYCLES = 10
    # Below this many bytes further cycles are not attempted
    SIZE_FLOOR = 100

    # magic, version, header size, compressor id, md5, original size,
    # compressed size, chain length
    _HEADER_FORMAT = '<4sBIB16sQQH'
    _ENTRY_FORMAT = '<BI'

    def __init__(self, registry=None, compressor=None, selector=None, analyzer=None,
                 logger=None, size_floor=None, show_progress=False):
        """
        Args:
            registry (TransformRegistry): transforms available to the run
            compressor (ExternalCompressor): byte compressor used every cycle
            selector: object with ``select(report, cycle)``
            analyzer (StatisticalAnalyzer): produces the per-cycle report
            logger (TransformLogger): diagnostics sink
            size_floor (int): stop once the compressed size drops below this
            show_progress (bool): display a tqdm bar over cycles
        """
        self.registry = registry if registry is not None else default_registry()
        self.compressor = compressor if compressor is not None else get_compressor()
        self.selector = selector if selector is not None else AnalysisSelector()
        self.analyzer = analyzer if analyzer is not None else StatisticalAnalyzer()
        self.logger = logger if logger is not None else TransformLogger()
        self.size_floor = self.SIZE_FLOOR if size_floor is None else size_floor
        self.show_progress = show_progress
        self.last_stats = None

    # --------------------------------------------------------------
    #   RUN
    # --------------------------------------------------------------
    def run(self, data: bytes, max_cycles=None) -> CompressionArtifact:
        """
        Compress ``data`` through repeated transform cycles.

        Cycle 1 is always kept. Later cycles are kept only when they make
        the compressed size strictly smaller. The run stops on the first
        cycle that does not improve, after ``max_cycles`` cycles, or once
        the size drops below the floor.

        Args:
            data (bytes): Data to compress
            max_cycles (int): Upper bound on cycles (0 returns data unchanged)

        Returns:
            CompressionArtifact: Best buffer seen and the chain that produced it
        """
        if max_cycles is None:
            max_cycles = self.DEFAULT_MAX_CYCLES
        if max_cycles < 0:
            raise ValueError(f"max_cycles must not be negative, got {max_cycles}")

        start_t = time.time()
        data = bytes(data)
        state = PipelineState(buffer=data)
        stop_reason = "max_cycles"
        self.logger.log(f"Pipeline start: {len(data)} bytes, up to {max_cycles} cycles "
                        f"({self.compressor.name})")

        with tqdm(total=max_cycles, desc="Cycles", unit="cycle", disable=not self.show_progress) as pbar:
            while state.cycle < max_cycles:
                state.cycle += 1
                report = self.analyzer.analyze(bytes_to_text(state.buffer))
                transform_id = self.selector.select(report, state.cycle)

                record, entry, compressed = self._run_cycle(state, transform_id)
                pbar.update(1)

                if state.best_size is not None and len(compressed) >= state.best_size:
                    state.reject(record)
                    self.logger.log(f"  No improvement ({len(compressed)} >= {state.best_size} bytes), stopping.")
                    stop_reason = "no_improvement"
                    break

                state.accept(record, entry, compressed)
                self.logger.log("  Improved.")

                if len(compressed) < self.size_floor:
                    self.logger.log(f"  Reached the {self.size_floor}-byte floor, stopping.")
                    stop_reason = "size_floor"
                    break

        artifact = self._build_artifact(data, state)
        self.last_stats = self._calculate_stats(artifact, state, time.time() - start_t, stop_reason)
        self._log_summary(artifact, stop_reason)
        return artifact

    def explore(self, data: bytes, time_budget, rng=None, clock=time.monotonic,
                max_cycles=None) -> CompressionArtifact:
        """
        Random exploration: each cycle applies a randomly chosen transform
        and is kept only if its compressed output is smaller than its input.
        The budget is checked between cycles, never during one.

        Args:
            data (bytes): Data to compress
            time_budget (float): Seconds, measured with ``clock``
            rng (random.Random): Source of transform choices
            clock (callable): Returns the current time in seconds
            max_cycles (int): Optional cap on attempted cycles

        Returns:
            CompressionArtifact: Best buffer found and its chain
        """
        if time_budget <= 0:
            raise ValueError(f"time_budget must be positive, got {time_budget}")

        selector = RandomSelector(self.registry.ids(include_identity=False), rng)
        start_t = time.time()
        data = bytes(data)
        state = PipelineState(buffer=data)
        stop_reason = "time_budget"
        self.logger.log(f"Exploration start: {len(data)} bytes, budget {time_budget}s")

        started = clock()
        while clock() - started < time_budget:
            if max_cycles is not None and state.cycle >= max_cycles:
                stop_reason = "max_cycles"
                break
            state.cycle += 1
            transform_id = selector.select(None, state.cycle)
            record, entry, compressed = self._run_cycle(state, transform_id)

            if len(compressed) < len(state.buffer):
                state.accept(record, entry, compressed)
            else:
                state.reject(record)
                self.logger.log("  Output grew, trying another transform...")

        artifact = self._build_artifact(data, state)
        self.last_stats = self._calculate_stats(artifact, state, time.time() - start_t, stop_reason)
        self._log_summary(artifact, stop_reason)
        return artifact

    def _run_cycle(self, state, transform_id):
        """
        Transform and compress the current buffer once.

        Returns:
            tuple: (CycleRecord, ChainEntry, compressed bytes)
        """
        text = bytes_to_text(state.buffer)
        method = self.registry.get(transform_id)
        fallback = False
        try:
            transformed, params = method.encode(text)
        except UnsupportedInputError as e:
            self.logger.log(f"  {method.name} cannot take this input ({e}); using IDENTITY")
            method = self.registry.get(TransformId.IDENTITY)
            transformed, params = method.encode(text)
            fallback = True

        compressed = self.compressor.compress(text_to_bytes(transformed))
        ratio = len(compressed) / max(1, len(state.buffer))
        record = CycleRecord(
            cycle=state.cycle,
            transform=method.name,
            input_size=len(state.buffer),
            transformed_size=len(transformed),
            compressed_size=len(compressed),
            ratio=ratio,
            fallback=fallback,
        )
        self.logger.log(f"Cycle {state.cycle}: {method.name}, {len(state.buffer)} -> "
                        f"{len(compressed)} bytes (ratio {ratio:.3f})")
        return record, ChainEntry(TransformId(method.type_id), params), compressed

    def _build_artifact(self, data, state):
        return CompressionArtifact(
            compressed=state.buffer,
            chain=tuple(state.chain),
            original_size=len(data),
            checksum=hashlib.md5(data).digest(),
            compressor=self.compressor.name,
            history=tuple(state.history),
        )

    def _log_summary(self, artifact, stop_reason):
        self.logger.log("=" * 50)
        self.logger.log(f"Best size: {len(artifact.compressed)} bytes (ratio {artifact.ratio:.3f})")
        self.logger.log(f"Transform chain: {[entry.name for entry in artifact.chain]}")
        self.logger.log(f"Stopped: {stop_reason}")

    # --------------------------------------------------------------
    #   DECOMPRESS
    # --------------------------------------------------------------
    def decompress(self, artifact: CompressionArtifact) -> bytes:
        """
        Undo a run: for each chain entry, last first, undo the external
        compressor and then the entry's transform.

        Args:
            artifact (CompressionArtifact): Output of run() or explore()

        Returns:
            bytes: The original data
        """
        compressor = self.compressor
        if artifact.compressor != compressor.name:
            compressor = get_compressor(artifact.compressor)

        buffer = artifact.compressed
        for entry in reversed(artifact.chain):
            text = frame_bytes_to_text(compressor.decompress(buffer))
            method = self.registry.get(entry.transform_id)
            buffer = text_to_input_bytes(method.decode(text, entry.params))
            self.logger.log(f"Undid {method.name}: {len(buffer)} bytes")

        if len(buffer) != artifact.original_size:
            raise ArtifactFormatError(
                f"Restored {len(buffer)} bytes, expected {artifact.original_size}"
            )
        if hashlib.md5(buffer).digest() != artifact.checksum:
            raise ArtifactFormatError("Checksum mismatch => possibly corrupted data.")
        return buffer

    # --------------------------------------------------------------
    #   CONTAINER FORMAT
    # --------------------------------------------------------------
    @classmethod
    def pack(cls, artifact: CompressionArtifact) -> bytes:
        """Serialize an artifact: header, chain entries, compressed payload."""
        compressor_id = get_compressor(artifact.compressor).type_id
        hdr = bytearray(struct.pack(
            cls._HEADER_FORMAT,
            cls.MAGIC_NUMBER,
            cls.FORMAT_VERSION,
            0,  # header size, patched below
            compressor_id,
            artifact.checksum,
            artifact.original_size,
            len(artifact.compressed),
            len(artifact.chain),
        ))
        for entry in artifact.chain:
            hdr.extend(struct.pack(cls._ENTRY_FORMAT, int(entry.transform_id),
                                   entry.params.get("recovery_index", 0)))
        hdr[5:9] = struct.pack('<I', len(hdr))
        return bytes(hdr) + artifact.compressed

    @classmethod
    def unpack(cls, data: bytes) -> CompressionArtifact:
        """Parse the output of pack()."""
        fixed_size = struct.calcsize(cls._HEADER_FORMAT)
        if len(data) < fixed_size:
            raise ArtifactFormatError("Data too short for an artifact header")
        (magic, version, hdr_size, compressor_id, checksum,
         original_size, comp_size, chain_length) = struct.unpack_from(cls._HEADER_FORMAT, data)
        if magic != cls.MAGIC_NUMBER:
            raise ArtifactFormatError("Magic mismatch")
        if version > cls.FORMAT_VERSION:
            raise ArtifactFormatError(f"Unsupported version: {version}")

        entry_size = struct.calcsize(cls._ENTRY_FORMAT)
        if hdr_size != fixed_size + chain_length * entry_size or hdr_size > len(data):
            raise ArtifactFormatError(f"Inconsistent header size {hdr_size}")

        chain = []
        for i in range(chain_length):
            type_id, recovery_index = struct.unpack_from(cls._ENTRY_FORMAT, data, fixed_size + i * entry_size)
            try:
                transform_id = TransformId(type_id)
            except ValueError:
                raise ArtifactFormatError(f"Unknown transform type id {type_id}") from None
            params = {"recovery_index": recovery_index} if transform_id == TransformId.BWT else {}
            chain.append(ChainEntry(transform_id, params))

        try:
            compressor_name = get_compressor_by_id(compressor_id).name
        except ValueError as e:
            raise ArtifactFormatError(str(e)) from None

        payload = data[hdr_size:hdr_size + comp_size]
        if len(payload) != comp_size:
            raise ArtifactFormatError(f"Truncated payload: {len(payload)} of {comp_size} bytes")

        return CompressionArtifact(
            compressed=payload,
            chain=tuple(chain),
            original_size=original_size,
            checksum=checksum,
            compressor=compressor_name,
        )

    # --------------------------------------------------------------
    #   FILES
    # --------------------------------------------------------------
    def compress_file(self, input_file, output_file, max_cycles=None):
        """
        Compress a file and write the packed artifact.

        Returns:
            dict: Run statistics plus the packed size
        """
        with open(input_file, "rb") as f:
            file_data = f.read()
        packed = self.pack(self.run(file_data, max_cycles))
        with open(output_file, "wb") as f:
            f.write(packed)
        stats = dict(self.last_stats)
        stats['packed_size'] = len(packed)
        return stats

    def decompress_file(self, input_file, output_file):
        start_t = time.time()
        with open(input_file, "rb") as f:
            cdata = f.read()
        restored = self.decompress(self.unpack(cdata))
        with open(output_file, "wb") as f:
            f.write(restored)
        return self._calculate_decompression_stats(len(cdata), len(restored), time.time() - start_t)

    # --------------------------------------------------------------
    #   STATS
    # --------------------------------------------------------------
    def _calculate_stats(self, artifact, state, elapsed, stop_reason):
        orig_size = artifact.original_size
        comp_size = len(artifact.compressed)
        if orig_size == 0:
            ratio = 1.0
            pr = 0.0
        else:
            ratio = comp_size / orig_size
            pr = (1.0 - ratio) * 100.0
        throughput = 0.0
        if elapsed > 0:
            throughput = orig_size / (1024 * 1024 * elapsed)

        usage = {}
        for entry in artifact.chain:
            usage[entry.name] = usage.get(entry.name, 0) + 1

        return {
            'original_size': orig_size,
            'compressed_size': comp_size,
            'ratio': ratio,
            'percent_reduction': pr,
            'elapsed_time': elapsed,
            'throughput_mb_per_sec': throughput,
            'compressor': artifact.compressor,
            'cycles': state.cycle,
            'chain': [entry.name for entry in artifact.chain],
            'transform_usage': usage,
            'transform_history': [r.transform for r in state.history],
            'size_history': [r.compressed_size for r in state.history],
            'ratio_history': [r.ratio for r in state.history],
            'accepted_history': [r.accepted for r in state.history],
            'stop_reason': stop_reason,
        }

    def _calculate_decompression_stats(self, csize, dsize, elapsed):
        tput = 0.0
        if elapsed > 0:
            tput = dsize / (1024 * 1024 * elapsed)
        return {
            'compressed_size': csize,
            'decompressed_size': dsize,
            'elapsed_time': elapsed,
            'throughput_mb_per_sec': tput
        }


def pack_artifact(artifact: CompressionArtifact) -> bytes:
    return CompressionPipeline.pack(artifact)


def unpack_artifact(data: bytes) -> CompressionArtifact:
    return CompressionPipeline.unpack(data)
