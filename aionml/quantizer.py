"""Model compression: INT8 and FP16 quantization, weight pruning and detection
of fusable operator pairs for models run by :mod:`aionml.runtime`."""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Sequence

from aionml.runtime import Model, OpType, Tensor, TensorType

log = logging.getLogger(__name__)

INT8_MIN = -128
INT8_MAX = 127
INT8_LEVELS = 255.0

FP16_INFINITY = 0x7C00
FP16_SIGN = 0x8000

_FLOAT_SIZE = 4
_FP16_SIZE = 2

_FUSABLE = {
    (OpType.CONV_2D, OpType.RELU): "Conv2D + ReLU",
    (OpType.FULLY_CONNECTED, OpType.RELU): "FC + ReLU",
}


class QuantizationType(IntEnum):
    NONE = 0
    DYNAMIC = 1
    INT8 = 2
    FLOAT16 = 3
    MIXED = 4


@dataclass
class QuantConfig:
    """Quantization settings; ``num_samples`` defaults to the calibration set size."""

    type: QuantizationType = QuantizationType.INT8
    calibration_data: list[Sequence[float]] = field(default_factory=list)
    num_samples: int | None = None
    optimize_for_size: bool = False
    optimize_for_latency: bool = False
    allow_fp16: bool = False
    has_int8_accelerator: bool = False
    has_fp16_accelerator: bool = False

    def __post_init__(self) -> None:
        if self.num_samples is None:
            self.num_samples = len(self.calibration_data)
        if self.num_samples < 0:
            raise ValueError("number of calibration samples must not be negative")


@dataclass
class QuantizedModel:
    """A model after quantization, with the per-tensor calibration figures."""

    model: Model
    quant_type: QuantizationType
    compression_ratio: float = 1.0
    min_values: list[float] = field(default_factory=list)
    max_values: list[float] = field(default_factory=list)
    scales: list[float] = field(default_factory=list)
    zero_points: list[int] = field(default_factory=list)


def _float_values(tensor: Tensor) -> list[float]:
    return list(tensor.data[: tensor.nbytes // _FLOAT_SIZE])


def _round_half_away(x: float) -> float:
    return math.copysign(math.floor(abs(x) + 0.5), x)


def _parameters(low: float, high: float) -> tuple[float, int]:
    scale = (high - low) / INT8_LEVELS
    if scale == 0.0:
        raise ValueError("cannot quantize a tensor whose values are all equal")
    return scale, int(-low / scale)


def _quantize_into(tensor: Tensor, values: list[float], scale: float, zero_point: int) -> None:
    quantized = [
        int(min(float(INT8_MAX), max(float(INT8_MIN), _round_half_away(x / scale + zero_point))))
        for x in values
    ]
    tensor.scale = scale
    tensor.zero_point = zero_point
    tensor.is_quantized = True
    tensor.data = quantized
    tensor.type = TensorType.INT8
    tensor.nbytes = len(quantized)


def _float_tensors(model: Model):
    for index, tensor in enumerate(model.tensors):
        if tensor.type.is_float:
            values = _float_values(tensor)
            if values:
                yield index, tensor, values


def dynamic_quant(model: Model) -> QuantizedModel:
    """Quantize every float tensor to INT8 using its own value range."""
    log.info("applying dynamic quantization")
    for _, tensor, values in list(_float_tensors(model)):
        scale, zero_point = _parameters(min(values), max(values))
        _quantize_into(tensor, values, scale, zero_point)
    result = QuantizedModel(model, QuantizationType.DYNAMIC, compression_ratio=4.0)
    log.info("dynamic quantization complete (%.1fx compression)", result.compression_ratio)
    return result


def ptq_int8(model: Model, config: QuantConfig) -> QuantizedModel:
    """Post-training INT8 quantization calibrated over ``config.num_samples`` passes."""
    samples = config.num_samples or 0
    log.info("applying INT8 post-training quantization with %d samples", samples)
    count = len(model.tensors)
    result = QuantizedModel(
        model,
        QuantizationType.INT8,
        min_values=[0.0] * count,
        max_values=[0.0] * count,
        scales=[0.0] * count,
        zero_points=[0] * count,
    )
    targets = list(_float_tensors(model))
    if targets and samples < 1:
        raise ValueError("calibration needs at least one sample")

    for _ in range(samples):
        for index, _tensor, values in targets:
            low = min(values)
            high = max(values)
            if _ == 0:
                result.min_values[index] = low
                result.max_values[index] = high
            else:
                result.min_values[index] = min(result.min_values[index], low)
                result.max_values[index] = max(result.max_values[index], high)

    for index, tensor, values in targets:
        scale, zero_point = _parameters(result.min_values[index], result.max_values[index])
        result.scales[index] = scale
        result.zero_points[index] = zero_point
        _quantize_into(tensor, values, scale, zero_point)

    result.compression_ratio = 4.0
    log.info("INT8 quantization complete")
    return result


def float_to_fp16(value: float) -> int:
    """Truncating FP32-to-FP16 bit conversion.

    Exponents below the half-precision range wrap around in 16-bit arithmetic
    and come out as infinity, as do those above it.
    """
    bits = struct.unpack("<I", struct.pack("<f", value))[0]
    sign = (bits >> 16) & FP16_SIGN
    exponent = (((bits >> 23) & 0xFF) - 112) & 0xFFFF
    mantissa = (bits >> 13) & 0x3FF
    if exponent == 0:
        return sign
    if exponent >= 31:
        return sign | FP16_INFINITY
    return (sign | (exponent << 10) | mantissa) & 0xFFFF


def fp16(model: Model) -> QuantizedModel:
    """Replace every float tensor's values with FP16 bit patterns.

    The tensor keeps its declared type; only its data and byte size change.
    """
    log.info("applying FP16 quantization")
    for _, tensor, values in list(_float_tensors(model)):
        tensor.data = [float_to_fp16(x) for x in values]
        tensor.nbytes = len(values) * _FP16_SIZE
    result = QuantizedModel(model, QuantizationType.FLOAT16, compression_ratio=2.0)
    log.info("FP16 quantization complete (2x compression)")
    return result


def prune(model: Model, threshold: float) -> tuple[int, int]:
    """Zero float weights smaller in magnitude than ``threshold``.

    Returns the number of pruned parameters and the number examined.
    """
    total = 0
    pruned = 0
    for tensor in model.tensors:
        if not tensor.type.is_float:
            continue
        count = tensor.nbytes // _FLOAT_SIZE
        values = tensor.data[:count]
        total += len(values)
        kept = []
        for x in values:
            if abs(x) < threshold:
                kept.append(0.0)
                pruned += 1
            else:
                kept.append(x)
        tensor.data[:count] = kept
    if total:
        log.info(
            "pruned %d/%d parameters (%.1f%% sparsity)", pruned, total, pruned / total * 100.0
        )
    return pruned, total


def fuse_ops(model: Model) -> int:
    """Count adjacent operator pairs that can be fused into one."""
    fused = 0
    for first, second in zip(model.operators, model.operators[1:]):
        name = _FUSABLE.get((first.type, second.type))
        if name is not None:
            log.info("fused %s", name)
            fused += 1
    log.info("fused %d operators", fused)
    return fused