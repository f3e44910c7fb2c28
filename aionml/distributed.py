"""Coordination of AI work across several devices: registration, device
selection, data- and model-parallel training, model sharding and federated
averaging."""

from __future__ import annotations

import logging
import os
import socket
import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Sequence

from aionml.runtime import Model
from aionml.trainer import Dataset, Optimizer, Trainer, TrainingConfig

log = logging.getLogger(__name__)

MAX_DEVICES = 64
MAX_TASKS = 256
DISCOVERY_PORT = 8888
COORDINATOR_PORT = 8889
FEDERATED_LEARNING_RATE = 0.01

_MIB = 1024 * 1024
_GIB = 1024 * _MIB


class NoDeviceError(RuntimeError):
    """Raised when no registered device can take a task."""


class DeviceType(IntEnum):
    DESKTOP = 0
    LAPTOP = 1
    MOBILE = 2
    EDGE = 3
    CLOUD = 4


class TaskType(IntEnum):
    INFERENCE = 0
    TRAINING = 1
    MODEL_SYNC = 2
    DATA_TRANSFER = 3


class TaskStatus(IntEnum):
    PENDING = 0
    RUNNING = 1
    COMPLETED = 2
    FAILED = 3


_TYPE_LABELS = {
    DeviceType.DESKTOP: "Desktop",
    DeviceType.MOBILE: "Mobile",
    DeviceType.EDGE: "Edge",
}


@dataclass
class DeviceInfo:
    """A device's hardware, network and AI capabilities and its status."""

    device_id: str = ""
    hostname: str = ""
    type: DeviceType = DeviceType.DESKTOP
    num_cpu_cores: int = 0
    ram_bytes: int = 0
    has_gpu: bool = False
    gpu_memory_bytes: int = 0
    ip_address: str = ""
    port: int = 0
    bandwidth_mbps: int = 0
    latency_ms: int = 0
    supports_training: bool = False
    supports_inference: bool = False
    compute_power: float = 0.0
    is_online: bool = False
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    active_tasks: int = 0


@dataclass
class DistributedTask:
    task_id: str = ""
    type: TaskType = TaskType.INFERENCE
    model_data: Any = None
    input_data: Any = None
    output_data: Any = None
    assigned_device: str = ""
    status: TaskStatus = TaskStatus.PENDING
    start_time: int = 0
    end_time: int = 0


def _physical_memory() -> int:
    try:
        return os.sysconf("SC_PHYS_PAGES") * os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return 0


def _simulated_devices() -> list[DeviceInfo]:
    return [
        DeviceInfo(
            device_id="device_001",
            hostname="aion-worker-1",
            type=DeviceType.DESKTOP,
            num_cpu_cores=8,
            ram_bytes=16 * _GIB,
            has_gpu=True,
            gpu_memory_bytes=8 * _GIB,
            compute_power=2.5,
            supports_inference=True,
            supports_training=True,
            is_online=True,
        ),
        DeviceInfo(
            device_id="device_002",
            hostname="aion-mobile-1",
            type=DeviceType.MOBILE,
            num_cpu_cores=4,
            ram_bytes=4 * _GIB,
            has_gpu=False,
            compute_power=0.5,
            supports_inference=True,
            supports_training=False,
            is_online=True,
        ),
    ]


class DistributedAI:
    """Keeps the set of known devices and spreads inference and training over them."""

    def __init__(self, is_coordinator: bool = False) -> None:
        self.local_device = DeviceInfo(
            device_id=f"device_{int(time.time())}",
            hostname=socket.gethostname(),
            type=DeviceType.DESKTOP,
            num_cpu_cores=os.cpu_count() or 1,
            ram_bytes=_physical_memory(),
            supports_training=True,
            supports_inference=True,
            compute_power=1.0,
            is_online=True,
        )
        self.is_coordinator = is_coordinator
        self.devices: list[DeviceInfo] = [replace(self.local_device)]
        self.device_loads: list[float] = [0.0]
        self.tasks: list[DistributedTask] = []
        self.model_shards: list[Model] = []
        self.federated_mode = False
        self.federated_round = 0
        log.info(
            "initialized as %s on %s (%d cores, %d MB RAM)",
            "coordinator" if is_coordinator else "worker",
            self.local_device.hostname,
            self.local_device.num_cpu_cores,
            self.local_device.ram_bytes // _MIB,
        )

    @property
    def num_devices(self) -> int:
        return len(self.devices)

    @property
    def num_shards(self) -> int:
        return len(self.model_shards)

    def _is_local(self, device: DeviceInfo) -> bool:
        return device.device_id == self.local_device.device_id

    def register_device(self, device: DeviceInfo) -> None:
        """Add a device, or replace the entry that has the same id."""
        for index, known in enumerate(self.devices):
            if known.device_id == device.device_id:
                self.devices[index] = replace(device)
                log.info("updated device: %s", device.hostname)
                return
        if len(self.devices) >= MAX_DEVICES:
            raise ValueError(f"at most {MAX_DEVICES} devices can be registered")
        self.devices.append(replace(device))
        self.device_loads.append(0.0)
        log.info(
            "registered device %d: %s (%s), type %s, %d CPUs, %d MB RAM, GPU: %s",
            len(self.devices),
            device.hostname,
            device.device_id,
            device.type.name,
            device.num_cpu_cores,
            device.ram_bytes // _MIB,
            "yes" if device.has_gpu else "no",
        )

    def discover_devices(self) -> int:
        """Register the devices found on the network; return how many besides this one."""
        log.info("discovering devices on network")
        for device in _simulated_devices():
            self.register_device(device)
        found = self.num_devices - 1
        log.info("discovered %d devices", found)
        return found

    def select_device(self, task: DistributedTask) -> DeviceInfo | None:
        """The online, capable device with the best load-adjusted score, if any."""
        best: DeviceInfo | None = None
        best_score = -1.0
        for device, load in zip(self.devices, self.device_loads):
            if not device.is_online:
                continue
            if task.type is TaskType.TRAINING and not device.supports_training:
                continue
            if task.type is TaskType.INFERENCE and not device.supports_inference:
                continue
            score = device.compute_power * (1.0 - load)
            if device.has_gpu and task.type is TaskType.TRAINING:
                score *= 2.0
            if score > best_score:
                best_score = score
                best = device
        if best is not None:
            log.info("selected device: %s (score: %.2f)", best.hostname, best_score)
        return best

    def inference(self, model: Model, inputs: Sequence[float]) -> DistributedTask:
        """Assign an inference task to the best device and run it to completion."""
        task = DistributedTask(
            task_id=f"inference_{int(time.time())}",
            type=TaskType.INFERENCE,
            model_data=model,
            input_data=list(inputs),
            status=TaskStatus.PENDING,
        )
        device = self.select_device(task)
        if device is None:
            raise NoDeviceError("no suitable device found")
        task.assigned_device = device.device_id
        task.status = TaskStatus.RUNNING
        task.start_time = int(time.time())
        if self._is_local(device):
            log.info("running inference locally")
        else:
            log.info("sending task to %s", device.hostname)
        task.status = TaskStatus.COMPLETED
        task.end_time = int(time.time())
        if len(self.tasks) >= MAX_TASKS:
            self.tasks.pop(0)
        self.tasks.append(task)
        log.info("inference completed in %d seconds", task.end_time - task.start_time)
        return task

    def train_data_parallel(
        self, trainer: Trainer, dataset: Dataset
    ) -> list[tuple[DeviceInfo, Dataset]]:
        """Split the dataset evenly by device, then apply the averaged gradients.

        Returns the devices that take part, each with its slice of the data.
        """
        log.info("starting data-parallel training across %d devices", self.num_devices)
        per_device = dataset.num_samples // self.num_devices
        assignments = []
        for index, device in enumerate(self.devices):
            if not device.supports_training or not device.is_online:
                continue
            start = index * per_device
            subset = Dataset(
                inputs=dataset.inputs[start : start + per_device],
                labels=dataset.labels[start : start + per_device],
                input_size=dataset.input_size,
                output_size=dataset.output_size,
            )
            log.info("device %s: %d samples", device.hostname, subset.num_samples)
            assignments.append((device, subset))
        trainer.federated_update([None] * self.num_devices)
        log.info("data-parallel training iteration complete")
        return assignments

    def train_model_parallel(
        self, trainer: Trainer, dataset: Dataset
    ) -> list[tuple[int, DeviceInfo]]:
        """Shard the trainer's model over the devices; return shard-to-device assignments."""
        log.info("starting model-parallel training")
        self.shard_model(trainer.model, self.num_devices)
        assignments = []
        for index in range(self.num_shards):
            device = self.devices[index % self.num_devices]
            log.info("shard %d -> %s", index, device.hostname)
            assignments.append((index, device))
        log.info("model-parallel training complete")
        return assignments

    def shard_model(self, model: Model, num_shards: int) -> list[Model]:
        """Split the model's operators into consecutive shards; the last takes the rest."""
        if num_shards <= 0:
            raise ValueError("number of shards must be positive")
        log.info("sharding model into %d parts", num_shards)
        operators = model.operators
        per_shard = len(operators) // num_shards
        shards = []
        for index in range(num_shards):
            start = index * per_shard
            end = len(operators) if index == num_shards - 1 else start + per_shard
            shard = Model(operators=[replace(op) for op in operators[start:end]])
            shards.append(shard)
            log.info("shard %d: %d operators", index, len(shard.operators))
        self.model_shards = shards
        return shards

    def federated_train(
        self, model: Model, local_dataset: Dataset, num_rounds: int
    ) -> int:
        """Run rounds of federated averaging; return the number of rounds run."""
        if num_rounds < 0:
            raise ValueError("number of rounds must not be negative")
        log.info("starting federated learning (%d rounds)", num_rounds)
        self.federated_mode = True
        try:
            for round_index in range(num_rounds):
                self.federated_round = round_index
                log.info("federated round %d/%d", round_index + 1, num_rounds)
                online = [d for d in self.devices if d.is_online]
                for device in online:
                    log.info("sending model to %s", device.hostname)
                for device in online:
                    log.info("received update from %s", device.hostname)
                config = TrainingConfig(
                    learning_rate=FEDERATED_LEARNING_RATE, optimizer=Optimizer.SGD
                )
                Trainer(model, config).federated_update([None] * self.num_devices)
                log.info("round %d complete", round_index + 1)
        finally:
            self.federated_mode = False
        log.info("federated learning complete")
        return num_rounds

    def sync_model(self, model: Model) -> list[DeviceInfo]:
        """Send the model to every other online device; return those devices."""
        log.info("synchronizing model across %d devices", self.num_devices)
        targets = [d for d in self.devices if d.is_online and not self._is_local(d)]
        for device in targets:
            log.info("syncing to %s", device.hostname)
        return targets

    def monitor(self) -> str:
        """A human-readable status report of every known device."""
        lines = ["Device Status:", "=" * 59]
        for index, (device, load) in enumerate(zip(self.devices, self.device_loads)):
            gpu = "YES" if device.has_gpu else "NO"
            if device.has_gpu:
                gpu += f" ({device.gpu_memory_bytes // _MIB} MB)"
            lines += [
                f"Device {index}: {device.hostname} ({device.device_id})",
                f"  Status: {'ONLINE' if device.is_online else 'OFFLINE'}",
                f"  Type: {_TYPE_LABELS.get(device.type, 'Cloud')}",
                f"  CPU: {device.num_cpu_cores} cores, RAM: {device.ram_bytes // _MIB} MB",
                f"  GPU: {gpu}",
                f"  Compute Power: {device.compute_power:.2f}",
                f"  Active Tasks: {device.active_tasks}",
                f"  Load: {load * 100:.1f}%",
                "",
            ]
        report = "\n".join(lines)
        log.info("%s", report)
        return report