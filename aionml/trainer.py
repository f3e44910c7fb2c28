"""On-device training: loss computation, SGD/Adam weight updates, federated
averaging and checkpoints for models run by :mod:`aionml.runtime`."""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass, field, replace
from enum import IntEnum
from os import PathLike
from typing import Sequence

from aionml.runtime import Model, Tensor

log = logging.getLogger(__name__)

ADAM_BETA1 = 0.9
ADAM_BETA2 = 0.999
ADAM_EPSILON = 1e-8
LOG_EPSILON = 1e-7

_FLOAT_SIZE = 4


class Optimizer(IntEnum):
    SGD = 0
    ADAM = 1
    RMSPROP = 2


class LossFunction(IntEnum):
    MSE = 0
    CROSS_ENTROPY = 1
    BINARY_CROSS_ENTROPY = 2


@dataclass
class TrainingConfig:
    learning_rate: float = 0.01
    batch_size: int = 1
    num_epochs: int = 1
    optimizer: Optimizer = Optimizer.SGD
    loss_function: LossFunction = LossFunction.MSE
    use_gpu: bool = False
    use_mixed_precision: bool = False
    l2_regularization: float = 0.0
    dropout_rate: float = 0.0


@dataclass
class Dataset:
    """Paired input and label vectors."""

    inputs: list[Sequence[float]] = field(default_factory=list)
    labels: list[Sequence[float]] = field(default_factory=list)
    input_size: int = 0
    output_size: int = 0

    def __post_init__(self) -> None:
        if len(self.inputs) != len(self.labels):
            raise ValueError("a dataset needs one label per input")

    @property
    def num_samples(self) -> int:
        return len(self.inputs)


def _float_count(tensor: Tensor) -> int:
    return tensor.nbytes // _FLOAT_SIZE


class Trainer:
    """Trains a model in place with the optimizer named by its configuration."""

    def __init__(self, model: Model, config: TrainingConfig) -> None:
        if not model.tensors or not model.output_indices:
            raise ValueError("the model needs tensors and an output")
        self.model = model
        self.config = replace(config)
        count = len(model.tensors)
        self.gradients: list[list[float] | None] = [None] * count
        self.momentum: list[list[float] | None] | None = None
        self.velocity: list[list[float] | None] | None = None
        if config.optimizer is Optimizer.ADAM:
            self.momentum = [None] * count
            self.velocity = [None] * count
        self.current_epoch = 0
        self.current_loss = 0.0
        self.loss_history = [0.0] * config.num_epochs
        self.gpu_context = None
        self.is_training = False

    def _forward(self, inputs: Sequence[float]) -> list[float]:
        tensors = self.model.tensors
        first = tensors[0]
        count = _float_count(first)
        values = list(inputs)
        if len(values) < count:
            raise ValueError(f"expected {count} input values, got {len(values)}")
        first.data[:count] = values[:count]
        output = tensors[self.model.output_indices[0]]
        return list(output.data[: _float_count(output)])

    def _loss(self, predicted: Sequence[float], target: Sequence[float]) -> float:
        size = len(predicted)
        if len(target) < size:
            raise ValueError(f"expected {size} label values, got {len(target)}")
        pairs = list(zip(predicted, target))
        loss_function = self.config.loss_function
        if loss_function is LossFunction.MSE:
            if not pairs:
                return 0.0
            return sum((p - t) ** 2 for p, t in pairs) / size
        if loss_function is LossFunction.CROSS_ENTROPY:
            return sum(-t * math.log(p + LOG_EPSILON) for p, t in pairs)
        return 0.0

    def _update_weights(self) -> None:
        config = self.config
        for index, tensor in enumerate(self.model.tensors):
            grads = self.gradients[index]
            if not tensor.type.is_float or grads is None:
                continue
            count = _float_count(tensor)
            weights = tensor.data[:count]
            if config.optimizer is Optimizer.SGD:
                tensor.data[:count] = [
                    w - config.learning_rate * g for w, g in zip(weights, grads)
                ]
            elif config.optimizer is Optimizer.ADAM:
                tensor.data[:count] = self._adam(index, weights, grads, count)

    def _adam(
        self, index: int, weights: list[float], grads: list[float], count: int
    ) -> list[float]:
        assert self.momentum is not None and self.velocity is not None
        m = self.momentum[index] or [0.0] * count
        v = self.velocity[index] or [0.0] * count
        step = self.current_epoch + 1
        correction1 = 1 - ADAM_BETA1**step
        correction2 = 1 - ADAM_BETA2**step
        updated = []
        for j, (w, g) in enumerate(zip(weights, grads)):
            m[j] = ADAM_BETA1 * m[j] + (1 - ADAM_BETA1) * g
            v[j] = ADAM_BETA2 * v[j] + (1 - ADAM_BETA2) * g * g
            m_hat = m[j] / correction1
            v_hat = v[j] / correction2
            updated.append(
                w - self.config.learning_rate * m_hat / (math.sqrt(v_hat) + ADAM_EPSILON)
            )
        self.momentum[index] = m
        self.velocity[index] = v
        return updated

    def step(self, inputs: Sequence[float], label: Sequence[float]) -> float:
        """Run one forward pass, compute the loss and apply an optimizer step."""
        predicted = self._forward(inputs)
        loss = self._loss(predicted, label)
        self._update_weights()
        return loss

    def train(self, train_data: Dataset, val_data: Dataset | None = None) -> None:
        batch_size = self.config.batch_size
        if batch_size <= 0:
            raise ValueError("batch size must be positive")
        num_batches = train_data.num_samples // batch_size
        if num_batches == 0:
            raise ValueError("the dataset holds fewer samples than one batch")
        log.info("starting training for %d epochs", self.config.num_epochs)
        self.is_training = True
        try:
            for epoch in range(self.config.num_epochs):
                self.current_epoch = epoch
                epoch_loss = 0.0
                for batch in range(num_batches):
                    start = batch * batch_size
                    samples = zip(
                        train_data.inputs[start : start + batch_size],
                        train_data.labels[start : start + batch_size],
                    )
                    batch_loss = sum(self.step(x, y) for x, y in samples)
                    epoch_loss += batch_loss / batch_size
                epoch_loss /= num_batches
                self.current_loss = epoch_loss
                self.loss_history[epoch] = epoch_loss
                val_loss = self.evaluate(val_data) if val_data is not None else 0.0
                log.info(
                    "epoch %d/%d - loss: %.6f - val loss: %.6f",
                    epoch + 1,
                    self.config.num_epochs,
                    epoch_loss,
                    val_loss,
                )
        finally:
            self.is_training = False
        log.info("training complete")

    def evaluate(self, test_data: Dataset) -> float:
        """Mean loss over the dataset, without updating weights."""
        if test_data.num_samples == 0:
            raise ValueError("cannot evaluate on an empty dataset")
        total = sum(
            self._loss(self._forward(x), y)
            for x, y in zip(test_data.inputs, test_data.labels)
        )
        return total / test_data.num_samples

    def fine_tune(self, data: Dataset, num_frozen_layers: int) -> None:
        log.info("fine-tuning with %d frozen layers", num_frozen_layers)
        self.train(data, None)

    def federated_update(
        self, gradients_from_devices: Sequence[Sequence[float] | None]
    ) -> None:
        """Average the devices' gradients and apply them to every float tensor.

        A device that sent nothing (``None``) contributes zeros to the average.
        """
        devices = list(gradients_from_devices)
        if not devices:
            raise ValueError("no device gradients to average")
        log.info("averaging gradients from %d devices", len(devices))
        for index, tensor in enumerate(self.model.tensors):
            if not tensor.type.is_float:
                continue
            count = _float_count(tensor)
            rows = []
            for grads in devices:
                row = [0.0] * count if grads is None else list(grads[:count])
                if len(row) < count:
                    raise ValueError(f"a device sent fewer than {count} gradients")
                rows.append(row)
            self.gradients[index] = [sum(column) / len(devices) for column in zip(*rows)]
        self._update_weights()

    def save_checkpoint(self, path: str | PathLike[str]) -> None:
        """Write epoch (uint32), loss (float32) and loss history, little-endian."""
        history = self.loss_history
        payload = struct.pack(
            f"<If{len(history)}f", self.current_epoch, self.current_loss, *history
        )
        with open(path, "wb") as handle:
            handle.write(payload)
        log.info("checkpoint saved: %s", path)