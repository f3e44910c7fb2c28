"""Minimal inference runtime: tensors laid out in a fixed-size arena and a
sequential operator executor."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Sequence

MAGIC = 0x54464C33
ARENA_ALIGNMENT = 64
DEFAULT_NUM_THREADS = 4
MAX_DIMS = 8

_PARSED_TENSORS = 10
_PARSED_OPERATORS = 5


class ModelError(Exception):
    """Raised when a model cannot be parsed, laid out or executed."""


class OpType(IntEnum):
    CONV_2D = 0
    DEPTHWISE_CONV_2D = 1
    FULLY_CONNECTED = 2
    POOLING = 3
    SOFTMAX = 4
    ADD = 5
    MUL = 6
    RESHAPE = 7
    RELU = 8
    SIGMOID = 9
    TANH = 10
    QUANTIZE = 11
    DEQUANTIZE = 12


class TensorType(IntEnum):
    FLOAT32 = 0
    INT8 = 1
    UINT8 = 2
    INT32 = 3
    INT64 = 4

    @property
    def item_size(self) -> int:
        """Size in bytes of one element of this type."""
        return _ITEM_SIZES.get(self, 4)

    @property
    def is_float(self) -> bool:
        return self is TensorType.FLOAT32


_ITEM_SIZES = {
    TensorType.FLOAT32: 4,
    TensorType.INT8: 1,
    TensorType.UINT8: 1,
    TensorType.INT32: 4,
    TensorType.INT64: 8,
}


class Backend(IntEnum):
    CPU = 0
    GPU_OPENCL = 1
    GPU_VULKAN = 2
    GPU_CUDA = 3
    NPU = 4
    AUTO = 5


@dataclass
class Tensor:
    """A tensor whose values live in ``data`` and whose place in the arena is ``offset``."""

    dims: list[int] = field(default_factory=list)
    type: TensorType = TensorType.FLOAT32
    data: list[Any] = field(default_factory=list)
    nbytes: int = 0
    offset: int | None = None
    scale: float = 0.0
    zero_point: int = 0
    is_quantized: bool = False

    def __post_init__(self) -> None:
        if len(self.dims) > MAX_DIMS:
            raise ValueError(f"a tensor has at most {MAX_DIMS} dimensions")

    @property
    def num_elements(self) -> int:
        return math.prod(self.dims)


@dataclass
class Operator:
    type: OpType = OpType.CONV_2D
    inputs: list[int] = field(default_factory=list)
    outputs: list[int] = field(default_factory=list)
    params: Any = None


@dataclass
class Model:
    tensors: list[Tensor] = field(default_factory=list)
    operators: list[Operator] = field(default_factory=list)
    input_indices: list[int] = field(default_factory=list)
    output_indices: list[int] = field(default_factory=list)
    arena_size: int = 0


def _align(offset: int) -> int:
    return (offset + ARENA_ALIGNMENT - 1) & ~(ARENA_ALIGNMENT - 1)


class Interpreter:
    """Lays a model's tensors out in an arena and runs its operators in order."""

    def __init__(self, arena_size: int) -> None:
        if arena_size < 0:
            raise ValueError("arena size must not be negative")
        self.model = Model(arena_size=arena_size)
        self.backend = Backend.AUTO
        self.num_threads = DEFAULT_NUM_THREADS
        self.use_xnnpack = False
        self.gpu_enabled = False

    def load_flatbuffer(self, buffer: bytes) -> Model:
        """Check the model magic and set up the minimal graph it describes."""
        if not buffer:
            raise ValueError("model buffer is empty")
        if len(buffer) < 4 or int.from_bytes(buffer[:4], "little") != MAGIC:
            raise ModelError("invalid model file")
        model = self.model
        model.tensors = [Tensor() for _ in range(_PARSED_TENSORS)]
        model.operators = [Operator() for _ in range(_PARSED_OPERATORS)]
        model.input_indices = [0]
        model.output_indices = [_PARSED_TENSORS - 1]
        return model

    def allocate(self) -> int:
        """Give every tensor its arena slot; return the number of bytes used."""
        offset = 0
        for tensor in self.model.tensors:
            elements = tensor.num_elements
            tensor.nbytes = elements * tensor.type.item_size
            offset = _align(offset)
            if offset + tensor.nbytes > self.model.arena_size:
                raise ModelError("arena too small")
            tensor.offset = offset
            zero = 0.0 if tensor.type.is_float else 0
            tensor.data = [zero] * elements
            offset += tensor.nbytes
        return offset

    def _input_tensor(self, index: int, indices: list[int], kind: str) -> Tensor:
        if not 0 <= index < len(indices):
            raise IndexError(f"no {kind} tensor at index {index}")
        return self.model.tensors[indices[index]]

    def set_input(self, index: int, data: Sequence[Any]) -> None:
        tensor = self._input_tensor(index, self.model.input_indices, "input")
        values = list(data)
        if len(values) * tensor.type.item_size != tensor.nbytes:
            raise ValueError("input size mismatch")
        tensor.data = values

    def invoke(self) -> None:
        for position, op in enumerate(self.model.operators):
            try:
                _execute(op, self.model.tensors)
            except ModelError as exc:
                raise ModelError(f"op {position} failed: {exc}") from exc

    def get_output(self, index: int) -> list[Any]:
        tensor = self._input_tensor(index, self.model.output_indices, "output")
        return list(tensor.data)

    def use_gpu(self) -> None:
        self.backend = Backend.GPU_OPENCL
        self.gpu_enabled = True


def _operands(op: Operator, tensors: list[Tensor]) -> tuple[Tensor, Tensor]:
    if not op.inputs or not op.outputs:
        raise ModelError(f"{op.type.name} needs an input and an output tensor")
    try:
        return tensors[op.inputs[0]], tensors[op.outputs[0]]
    except IndexError as exc:
        raise ModelError("operator refers to a missing tensor") from exc


def _execute(op: Operator, tensors: list[Tensor]) -> None:
    if op.type is OpType.FULLY_CONNECTED:
        return
    if op.type is OpType.RELU:
        source, target = _operands(op, tensors)
        count = source.nbytes // 4
        target.data[:count] = [x if x > 0.0 else 0.0 for x in source.data[:count]]
        return
    if op.type is OpType.SOFTMAX:
        source, target = _operands(op, tensors)
        count = source.nbytes // 4
        values = source.data[:count]
        if not values:
            return
        peak = max(values)
        exps = [math.exp(x - peak) for x in values]
        total = sum(exps)
        target.data[:count] = [e / total for e in exps]
        return
    raise ModelError(f"unsupported op: {op.type.name}")