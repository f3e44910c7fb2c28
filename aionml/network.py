"""Small feed-forward networks and heuristics for predicting process behaviour."""

from __future__ import annotations

import math
import random
import statistics
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Sequence

MAX_LAYERS = 16
DEFAULT_LEARNING_RATE = 0.01
PAGE_SIZE = 4096
MAX_PREDICTED_ALLOCATION = 1024 * 1024 * 1024
MAX_PIDS = 1024

_MIB = 1024 * 1024


def relu(x: float) -> float:
    return x if x > 0 else 0.0


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def tanh_activation(x: float) -> float:
    return math.tanh(x)


@dataclass
class Layer:
    """A dense layer; ``weights[k][j]`` links input ``k`` to output ``j``."""

    weights: list[list[float]]
    biases: list[float]
    activation: Callable[[float], float]

    @property
    def input_size(self) -> int:
        return len(self.weights)

    @property
    def output_size(self) -> int:
        return len(self.biases)

    def forward(self, inputs: Sequence[float]) -> list[float]:
        return [
            self.activation(bias + sum(x * w for x, w in zip(inputs, column)))
            for bias, column in zip(self.biases, zip(*self.weights))
        ]


class NeuralNetwork:
    """Fully connected network: ReLU hidden layers and a sigmoid output layer."""

    def __init__(self, layer_sizes: Sequence[int], rng: random.Random | None = None) -> None:
        sizes = list(layer_sizes)
        if len(sizes) < 2:
            raise ValueError("a network needs an input and an output layer")
        if len(sizes) - 1 > MAX_LAYERS:
            raise ValueError(f"at most {MAX_LAYERS} layers are supported")
        if any(size <= 0 for size in sizes):
            raise ValueError("layer sizes must be positive")
        rng = rng or random.Random()
        self.learning_rate = DEFAULT_LEARNING_RATE
        self.layers: list[Layer] = []
        last = len(sizes) - 2
        for position, (fan_in, fan_out) in enumerate(zip(sizes, sizes[1:])):
            scale = math.sqrt(2.0 / fan_in)
            weights = [
                [(rng.random() - 0.5) * 2.0 * scale for _ in range(fan_out)]
                for _ in range(fan_in)
            ]
            activation = sigmoid if position == last else relu
            self.layers.append(Layer(weights, [0.0] * fan_out, activation))

    @property
    def num_layers(self) -> int:
        return len(self.layers)

    def predict(self, inputs: Sequence[float]) -> list[float]:
        current = list(inputs)
        if len(current) != self.layers[0].input_size:
            raise ValueError(
                f"expected {self.layers[0].input_size} inputs, got {len(current)}"
            )
        for layer in self.layers:
            current = layer.forward(current)
        return current


@dataclass
class ProcessStats:
    """The per-process figures the predictors look at."""

    pid: int = 0
    memory_usage: int = 0
    num_allocations: int = 0
    avg_allocation_size: int = 0
    cpu_time: int = 0
    priority: int = 0
    running: bool = False
    num_threads: int = 1
    page_faults: int = 0
    cpu_usage_percent: float = 0.0


@lru_cache(maxsize=None)
def _default_memory_model() -> NeuralNetwork:
    return NeuralNetwork([8, 16, 8, 1])


def predict_memory_allocation(
    proc: ProcessStats | None, model: NeuralNetwork | None = None
) -> int:
    """Predict the next allocation size in bytes, clamped to [page, 1 GiB]."""
    if proc is None:
        return PAGE_SIZE
    features = [
        proc.memory_usage / _MIB,
        float(proc.num_allocations),
        float(proc.avg_allocation_size),
        proc.cpu_time / 1_000_000,
        float(proc.priority),
        1.0 if proc.running else 0.0,
        float(proc.num_threads),
        float(proc.page_faults),
    ]
    network = model if model is not None else _default_memory_model()
    predicted = int(network.predict(features)[0] * _MIB)
    return max(PAGE_SIZE, min(predicted, MAX_PREDICTED_ALLOCATION))


class MemoryLeakDetector:
    """Flags a process whose memory jumps by half after enough measurements."""

    min_measurements = 10
    growth_factor = 1.5

    def __init__(self) -> None:
        self._last: dict[int, int] = {}
        self._count: dict[int, int] = {}

    def check(self, proc: ProcessStats | None) -> bool:
        if proc is None or not 0 <= proc.pid < MAX_PIDS:
            return False
        pid = proc.pid
        current = proc.memory_usage
        count = self._count.get(pid, 0)
        if count > self.min_measurements and current > self._last.get(pid, 0) * self.growth_factor:
            return True
        self._last[pid] = current
        self._count[pid] = count + 1
        return False


class CpuAnomalyDetector:
    """Flags CPU usage more than three standard deviations from its recent mean."""

    history_length = 100
    threshold = 3.0

    def __init__(self) -> None:
        self._history: dict[int, deque[float]] = {}

    def check(self, proc: ProcessStats | None) -> bool:
        if proc is None or not 0 <= proc.pid < MAX_PIDS:
            return False
        history = self._history.setdefault(
            proc.pid, deque([0.0] * self.history_length, maxlen=self.history_length)
        )
        current = float(proc.cpu_usage_percent)
        history.append(current)
        mean = statistics.fmean(history)
        stddev = statistics.pstdev(history, mu=mean)
        return abs(current - mean) > self.threshold * stddev