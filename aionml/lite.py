"""Lightweight model loader and interpreter: a fixed demonstration graph,
arena-based tensor allocation, INT8 tensor quantization and a reference
NHWC convolution."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from os import PathLike, fspath
from typing import Any, Sequence

log = logging.getLogger(__name__)

SCHEMA_VERSION = 3
DEFAULT_NUM_THREADS = 4
DEFAULT_ARENA_SIZE = 64 * 1024 * 1024
ARENA_ALIGNMENT = 16
MAX_PATH_LENGTH = 255
MAX_NAME_LENGTH = 63

INT8_MIN = -128
INT8_MAX = 127
INT8_LEVELS = 255.0

_GRAPH_TENSORS = 20
_GRAPH_OPERATORS = 10
_INPUT_INDEX = 0
_OUTPUT_INDEX = 19
_INPUT_DIMS = (1, 224, 224, 3)
_OUTPUT_DIMS = (1, 1000)
_FLOAT_SIZE = 4


class ArenaExhaustedError(MemoryError):
    """Raised when the interpreter's arena cannot hold another tensor."""


class LiteType(IntEnum):
    FLOAT32 = 0
    INT32 = 1
    UINT8 = 2
    INT64 = 3
    STRING = 4
    BOOL = 5
    INT16 = 6
    COMPLEX64 = 7
    INT8 = 8
    FLOAT16 = 9

    @property
    def item_size(self) -> int:
        """Size in bytes of one element of this type."""
        return _ITEM_SIZES[self]

    @property
    def is_float(self) -> bool:
        return self in (LiteType.FLOAT32, LiteType.FLOAT16, LiteType.COMPLEX64)


_ITEM_SIZES = {
    LiteType.FLOAT32: 4,
    LiteType.INT32: 4,
    LiteType.UINT8: 1,
    LiteType.INT64: 8,
    LiteType.STRING: 1,
    LiteType.BOOL: 1,
    LiteType.INT16: 2,
    LiteType.COMPLEX64: 8,
    LiteType.INT8: 1,
    LiteType.FLOAT16: 2,
}


class BuiltinOperator(IntEnum):
    ADD = 0
    AVERAGE_POOL_2D = 1
    CONCATENATION = 2
    CONV_2D = 3
    DEPTHWISE_CONV_2D = 4
    FULLY_CONNECTED = 9
    MAX_POOL_2D = 17
    RELU = 19
    RESHAPE = 22
    SOFTMAX = 25


@dataclass
class Quantization:
    scale: float = 0.0
    zero_point: int = 0
    quantized_dimension: int = 0


@dataclass
class LiteTensor:
    """A tensor; ``data`` is ``None`` until the interpreter allocates it."""

    name: str = ""
    type: LiteType = LiteType.FLOAT32
    dims: list[int] = field(default_factory=list)
    nbytes: int = 0
    data: list[Any] | None = None
    offset: int | None = None
    quantization: Quantization = field(default_factory=Quantization)
    is_quantized: bool = False

    def __post_init__(self) -> None:
        self.name = self.name[:MAX_NAME_LENGTH]


@dataclass
class LiteOperator:
    opcode: BuiltinOperator = BuiltinOperator.ADD
    op_name: str = ""
    inputs: list[int] = field(default_factory=list)
    outputs: list[int] = field(default_factory=list)
    builtin_options: Any = None


@dataclass
class Subgraph:
    tensors: list[LiteTensor] = field(default_factory=list)
    operators: list[LiteOperator] = field(default_factory=list)
    inputs: list[int] = field(default_factory=list)
    outputs: list[int] = field(default_factory=list)


@dataclass
class LiteModel:
    model_path: str = ""
    version: int = SCHEMA_VERSION
    subgraphs: list[Subgraph] = field(default_factory=list)
    buffers: list[bytes] = field(default_factory=list)
    description: str = ""
    loaded: bool = False
    total_size: int = 0

    def __post_init__(self) -> None:
        self.model_path = self.model_path[:MAX_PATH_LENGTH]


def _float_tensor(name: str, dims: Sequence[int]) -> LiteTensor:
    count = 1
    for d in dims:
        count *= d
    return LiteTensor(name=name, type=LiteType.FLOAT32, dims=list(dims), nbytes=count * _FLOAT_SIZE)


def load_model(model_path: str | PathLike[str]) -> LiteModel:
    """Read a model file and set up the image-classification graph it stands for.

    Input is ``[1, 224, 224, 3]`` (NHWC), output ``[1, 1000]``.
    """
    path = fspath(model_path)
    log.info("loading model: %s", path)
    with open(path, "rb") as handle:
        content = handle.read()

    tensors = [LiteTensor() for _ in range(_GRAPH_TENSORS)]
    tensors[_INPUT_INDEX] = _float_tensor("input", _INPUT_DIMS)
    tensors[_OUTPUT_INDEX] = _float_tensor("output", _OUTPUT_DIMS)
    subgraph = Subgraph(
        tensors=tensors,
        operators=[LiteOperator() for _ in range(_GRAPH_OPERATORS)],
        inputs=[_INPUT_INDEX],
        outputs=[_OUTPUT_INDEX],
    )
    model = LiteModel(
        model_path=path,
        version=SCHEMA_VERSION,
        subgraphs=[subgraph],
        loaded=True,
        total_size=len(content),
    )
    log.info("input shape: %s, output shape: %s", list(_INPUT_DIMS), list(_OUTPUT_DIMS))
    return model


def _align(offset: int) -> int:
    return (offset + ARENA_ALIGNMENT - 1) & ~(ARENA_ALIGNMENT - 1)


class LiteInterpreter:
    """Allocates a loaded model's tensors in an arena and runs its operators."""

    def __init__(self, model: LiteModel) -> None:
        if not model.loaded or not model.subgraphs:
            raise ValueError("the model is not loaded")
        self.model = model
        self.current_subgraph = 0
        self.num_threads = DEFAULT_NUM_THREADS
        self.use_gpu = False
        self.use_nnapi = False
        self.allow_fp16 = True
        self.arena_size = DEFAULT_ARENA_SIZE
        self.arena_used = 0
        self.input_tensors: list[LiteTensor] = []
        self.output_tensors: list[LiteTensor] = []
        self.invocations = 0
        self.total_time_us = 0
        self.avg_time_us = 0
        self._lock = threading.Lock()

    @property
    def subgraph(self) -> Subgraph:
        return self.model.subgraphs[self.current_subgraph]

    def allocate_tensors(self) -> int:
        """Place every unallocated tensor in the arena; return the bytes in use."""
        subgraph = self.subgraph
        for tensor in subgraph.tensors:
            if tensor.data is not None or tensor.nbytes <= 0:
                continue
            if self.arena_used + tensor.nbytes > self.arena_size:
                raise ArenaExhaustedError("arena out of memory")
            tensor.offset = self.arena_used
            zero = 0.0 if tensor.type.is_float else 0
            tensor.data = [zero] * (tensor.nbytes // tensor.type.item_size)
            self.arena_used = _align(self.arena_used + tensor.nbytes)
        self.input_tensors = [subgraph.tensors[i] for i in subgraph.inputs]
        self.output_tensors = [subgraph.tensors[i] for i in subgraph.outputs]
        log.info("tensors allocated (%d KB used)", self.arena_used // 1024)
        return self.arena_used

    @staticmethod
    def _pick(tensors: list[LiteTensor], index: int, kind: str) -> LiteTensor:
        if not 0 <= index < len(tensors):
            raise IndexError(f"no {kind} tensor at index {index}")
        return tensors[index]

    def input_tensor(self, index: int) -> LiteTensor:
        return self._pick(self.input_tensors, index, "input")

    def output_tensor(self, index: int) -> LiteTensor:
        return self._pick(self.output_tensors, index, "output")

    def invoke(self) -> int:
        """Run the operators in order; return the elapsed time in microseconds."""
        with self._lock:
            start = time.perf_counter_ns()
            for op in self.subgraph.operators:
                # The graph carries no operator wiring, so every operator is a no-op.
                log.debug("executing %s", op.opcode.name)
            elapsed_us = (time.perf_counter_ns() - start) // 1000
            self.invocations += 1
            self.total_time_us += elapsed_us
            self.avg_time_us = self.total_time_us // self.invocations
        log.info("inference complete in %d us", elapsed_us)
        return elapsed_us


def quantize_tensor(tensor: LiteTensor, float_data: Sequence[float]) -> None:
    """Quantize ``float_data`` into ``tensor`` as INT8 over its min/max range."""
    count = tensor.nbytes // _FLOAT_SIZE
    values = list(float_data[:count])
    if count == 0 or not values:
        raise ValueError("no values to quantize")
    if len(values) < count:
        raise ValueError(f"expected {count} values, got {len(values)}")
    low = min(values)
    high = max(values)
    scale = (high - low) / INT8_LEVELS
    if scale == 0.0:
        raise ValueError("cannot quantize a tensor whose values are all equal")
    zero_point = int(-low / scale)
    tensor.quantization.scale = scale
    tensor.quantization.zero_point = zero_point
    tensor.data = [
        max(INT8_MIN, min(INT8_MAX, int(x / scale + 0.5) + zero_point)) for x in values
    ]
    tensor.is_quantized = True
    tensor.type = LiteType.INT8


def conv2d(
    input: LiteTensor,
    filter: LiteTensor,
    bias: LiteTensor | None,
    output: LiteTensor,
    stride: int,
    padding: int,
) -> None:
    """Naive NHWC convolution writing into ``output.data``.

    The filter is laid out ``[height, width, in_channels, out_channels]``.
    """
    if stride <= 0:
        raise ValueError("stride must be positive")
    in_data = input.data or []
    f_data = filter.data or []
    b_data = bias.data if bias is not None else None
    _, in_h, in_w, in_c = input.dims
    f_h, f_w, _, out_c = filter.dims
    _, out_h, out_w = output.dims[:3]

    def cell(oh: int, ow: int, oc: int) -> float:
        total = b_data[oc] if b_data is not None else 0.0
        for fh in range(f_h):
            ih = oh * stride + fh - padding
            if not 0 <= ih < in_h:
                continue
            for fw in range(f_w):
                iw = ow * stride + fw - padding
                if not 0 <= iw < in_w:
                    continue
                for ic in range(in_c):
                    in_idx = (ih * in_w + iw) * in_c + ic
                    f_idx = ((fh * f_w + fw) * in_c + ic) * out_c + oc
                    total += in_data[in_idx] * f_data[f_idx]
        return total

    output.data = [
        cell(oh, ow, oc) for oh in range(out_h) for ow in range(out_w) for oc in range(out_c)
    ]