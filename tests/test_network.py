import math
import random

import pytest

from aionml.network import (
    CpuAnomalyDetector,
    MemoryLeakDetector,
    NeuralNetwork,
    ProcessStats,
    predict_memory_allocation,
    relu,
    sigmoid,
    tanh_activation,
)


def zero_network(sizes):
    nn = NeuralNetwork(sizes, random.Random(0))
    for layer in nn.layers:
        layer.weights = [[0.0] * layer.output_size for _ in range(layer.input_size)]
    return nn


def test_activations():
    assert relu(-3.0) == 0.0
    assert relu(2.5) == 2.5
    assert sigmoid(0.0) == 0.5
    assert tanh_activation(0.0) == 0.0
    assert sigmoid(1000.0) == 1.0
    assert 0.0 <= sigmoid(-1000.0) < 1e-100


@pytest.mark.parametrize("x", [-4.0, -0.3, 0.7, 6.0])
def test_sigmoid_symmetry(x):
    assert sigmoid(x) + sigmoid(-x) == pytest.approx(1.0)


def test_structure():
    nn = NeuralNetwork([8, 16, 8, 1], random.Random(1))
    assert nn.num_layers == 3
    assert [(l.input_size, l.output_size) for l in nn.layers] == [(8, 16), (16, 8), (8, 1)]
    assert [l.activation for l in nn.layers] == [relu, relu, sigmoid]
    assert all(b == 0.0 for l in nn.layers for b in l.biases)
    assert nn.learning_rate == 0.01


def test_weights_within_xavier_bound():
    nn = NeuralNetwork([8, 16, 4], random.Random(3))
    for layer in nn.layers:
        bound = math.sqrt(2.0 / layer.input_size)
        assert all(abs(w) <= bound for row in layer.weights for w in row)


def test_seeded_networks_match():
    a = NeuralNetwork([3, 5, 2], random.Random(42))
    b = NeuralNetwork([3, 5, 2], random.Random(42))
    assert a.layers[0].weights == b.layers[0].weights
    assert a.predict([1.0, -2.0, 0.5]) == b.predict([1.0, -2.0, 0.5])


def test_predict_output_shape_and_range():
    nn = NeuralNetwork([4, 6, 3], random.Random(5))
    out = nn.predict([0.1, 0.2, -0.3, 1.0])
    assert len(out) == 3
    assert all(0.0 < v < 1.0 for v in out)


def test_predict_wrong_input_length():
    nn = NeuralNetwork([4, 2], random.Random(5))
    with pytest.raises(ValueError):
        nn.predict([1.0, 2.0])


def test_layer_limit():
    assert NeuralNetwork([2] * 17, random.Random(0)).num_layers == 16
    with pytest.raises(ValueError):
        NeuralNetwork([2] * 18, random.Random(0))
    with pytest.raises(ValueError):
        NeuralNetwork([4], random.Random(0))


def test_memory_prediction_without_process():
    assert predict_memory_allocation(None) == 4096


def test_memory_prediction_with_neutral_model():
    proc = ProcessStats(pid=1, memory_usage=5 * 1024 * 1024, running=True)
    assert predict_memory_allocation(proc, zero_network([8, 16, 8, 1])) == 524288


def test_memory_prediction_is_clamped():
    proc = ProcessStats(pid=2, memory_usage=123456, num_allocations=10, page_faults=3)
    value = predict_memory_allocation(proc)
    assert 4096 <= value <= 1024 * 1024


def test_leak_detector_needs_history():
    detector = MemoryLeakDetector()
    results = [
        detector.check(ProcessStats(pid=7, memory_usage=1000 * (i + 1) ** 3)) for i in range(11)
    ]
    assert results == [False] * 11


def test_leak_detector_flags_growth():
    detector = MemoryLeakDetector()
    for _ in range(11):
        assert detector.check(ProcessStats(pid=3, memory_usage=1000)) is False
    assert detector.check(ProcessStats(pid=3, memory_usage=1400)) is False
    assert detector.check(ProcessStats(pid=3, memory_usage=3000)) is True


def test_leak_detector_ignores_out_of_range():
    detector = MemoryLeakDetector()
    assert detector.check(None) is False
    for _ in range(20):
        assert detector.check(ProcessStats(pid=1024, memory_usage=10)) is False
    assert detector.check(ProcessStats(pid=1024, memory_usage=10**9)) is False


def test_cpu_steady_usage_is_normal():
    detector = CpuAnomalyDetector()
    assert all(
        detector.check(ProcessStats(pid=4, cpu_usage_percent=0.0)) is False for _ in range(50)
    )


def test_cpu_spike_is_anomaly():
    detector = CpuAnomalyDetector()
    for _ in range(100):
        detector.check(ProcessStats(pid=5, cpu_usage_percent=10.0))
    assert detector.check(ProcessStats(pid=5, cpu_usage_percent=10.0)) is False
    assert detector.check(ProcessStats(pid=5, cpu_usage_percent=95.0)) is True


def test_cpu_histories_are_per_process():
    detector = CpuAnomalyDetector()
    for _ in range(100):
        detector.check(ProcessStats(pid=8, cpu_usage_percent=60.0))
    assert detector.check(ProcessStats(pid=8, cpu_usage_percent=60.0)) is False
    assert detector.check(ProcessStats(pid=9, cpu_usage_percent=60.0)) is True
    assert detector.check(None) is False
    assert detector.check(ProcessStats(pid=2000, cpu_usage_percent=99.0)) is False