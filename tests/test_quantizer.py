import struct

import pytest

from aionml.quantizer import (
    FP16_INFINITY,
    INT8_MAX,
    INT8_MIN,
    QuantConfig,
    QuantizationType,
    dynamic_quant,
    float_to_fp16,
    fp16,
    fuse_ops,
    prune,
    ptq_int8,
)
from aionml.runtime import Model, Operator, OpType, Tensor, TensorType


def _float_tensor(values):
    return Tensor(dims=[len(values)], data=list(values), nbytes=4 * len(values))


def _int_tensor(values):
    return Tensor(
        dims=[len(values)], type=TensorType.INT32, data=list(values), nbytes=4 * len(values)
    )


def _half_bits(x):
    return struct.unpack("<H", struct.pack("<e", x))[0]


def test_dynamic_quant_unit_scale():
    model = Model(tensors=[_float_tensor([0.0, 10.0, 20.0, 255.0])])
    result = dynamic_quant(model)
    tensor = model.tensors[0]
    assert result.quant_type is QuantizationType.DYNAMIC
    assert result.compression_ratio == 4.0
    assert tensor.type is TensorType.INT8
    assert tensor.scale == 1.0
    assert tensor.zero_point == 0
    assert tensor.data == [0, 10, 20, INT8_MAX]
    assert tensor.nbytes == 4
    assert tensor.is_quantized


def test_dynamic_quant_values_stay_in_int8_range():
    model = Model(tensors=[_float_tensor([-3.5, -1.0, 0.25, 7.75, 100.0])])
    dynamic_quant(model)
    data = model.tensors[0].data
    assert len(data) == 5
    assert all(INT8_MIN <= q <= INT8_MAX for q in data)
    assert data == sorted(data)


def test_dynamic_quant_leaves_non_float_tensors():
    model = Model(tensors=[_int_tensor([1, 2, 3]), _float_tensor([0.0, 255.0])])
    dynamic_quant(model)
    assert model.tensors[0].type is TensorType.INT32
    assert model.tensors[0].data == [1, 2, 3]
    assert model.tensors[1].type is TensorType.INT8


def test_dynamic_quant_constant_tensor_raises():
    model = Model(tensors=[_float_tensor([2.0, 2.0])])
    with pytest.raises(ValueError):
        dynamic_quant(model)


def test_ptq_matches_dynamic_for_static_data():
    values = [-1.0, 0.5, 3.0, 12.0]
    dyn_model = Model(tensors=[_float_tensor(values)])
    ptq_model = Model(tensors=[_int_tensor([7]), _float_tensor(values)])
    dynamic_quant(dyn_model)
    result = ptq_int8(ptq_model, QuantConfig(num_samples=3))
    assert result.quant_type is QuantizationType.INT8
    assert result.compression_ratio == 4.0
    assert ptq_model.tensors[1].data == dyn_model.tensors[0].data
    assert result.min_values[1] == -1.0
    assert result.max_values[1] == 12.0
    assert result.scales[1] == dyn_model.tensors[0].scale
    assert result.zero_points[1] == dyn_model.tensors[0].zero_point
    assert result.scales[0] == 0.0
    assert ptq_model.tensors[0].data == [7]


def test_ptq_requires_samples():
    model = Model(tensors=[_float_tensor([0.0, 1.0])])
    with pytest.raises(ValueError):
        ptq_int8(model, QuantConfig(num_samples=0))


def test_quant_config_counts_calibration_data():
    config = QuantConfig(calibration_data=[[1.0], [2.0]])
    assert config.num_samples == 2


def test_float_to_fp16_normal_values_match_ieee():
    for value in (1.0, -2.0, 0.5, 65504.0, 3.140625):
        assert float_to_fp16(value) == _half_bits(value)


def test_float_to_fp16_one():
    assert float_to_fp16(1.0) == 0x3C00


def test_float_to_fp16_out_of_range_is_infinity():
    assert float_to_fp16(1e10) == FP16_INFINITY
    assert float_to_fp16(-1e10) == FP16_INFINITY | 0x8000
    assert float_to_fp16(0.0) == FP16_INFINITY


def test_fp16_converts_tensors():
    values = [1.0, -2.0, 0.5]
    model = Model(tensors=[_float_tensor(values), _int_tensor([4])])
    result = fp16(model)
    assert result.quant_type is QuantizationType.FLOAT16
    assert result.compression_ratio == 2.0
    assert model.tensors[0].data == [_half_bits(v) for v in values]
    assert model.tensors[0].nbytes == 6
    assert model.tensors[1].data == [4]


def test_prune_zeroes_small_weights():
    model = Model(tensors=[_float_tensor([0.05, -0.5, 0.01, 2.0]), _int_tensor([0])])
    pruned, total = prune(model, 0.1)
    assert (pruned, total) == (2, 4)
    assert model.tensors[0].data == [0.0, -0.5, 0.0, 2.0]


def test_prune_zero_threshold_keeps_all():
    model = Model(tensors=[_float_tensor([0.05, -0.5])])
    assert prune(model, 0.0) == (0, 2)
    assert model.tensors[0].data == [0.05, -0.5]


def test_fuse_ops_counts_pairs():
    ops = [
        Operator(OpType.CONV_2D),
        Operator(OpType.RELU),
        Operator(OpType.FULLY_CONNECTED),
        Operator(OpType.RELU),
        Operator(OpType.SOFTMAX),
    ]
    assert fuse_ops(Model(operators=ops)) == 2


def test_fuse_ops_empty_and_unfusable():
    assert fuse_ops(Model()) == 0
    ops = [Operator(OpType.RELU), Operator(OpType.CONV_2D), Operator(OpType.SOFTMAX)]
    assert fuse_ops(Model(operators=ops)) == 0