# aionml

A small machine-learning toolkit written in plain Python. It needs nothing
outside the standard library.

## Modules

- `aionml.network` has `NeuralNetwork`, a dense feed-forward network. Its
  hidden layers use ReLU and its output layer uses a sigmoid. Weights are
  random and scaled by `sqrt(2 / fan_in)`. The module also provides
  `relu`, `sigmoid` and `tanh_activation`. `predict_memory_allocation` returns
  a size in bytes, clamped between 4096 and 1 GiB. There are two per-process
  detectors that take `ProcessStats`:
  - `MemoryLeakDetector` flags memory that has grown by 50 % once more than
    ten measurements have been taken.
  - `CpuAnomalyDetector` flags usage more than three standard deviations from
    the mean of the last 100 samples.
- `aionml.runtime` has `Interpreter`. `load_flatbuffer` checks the `TFL3`
  magic and then sets up a fixed graph of 10 tensors and 5 operators.
  `allocate` places the tensors in a fixed-size arena with 64-byte alignment
  and raises `ModelError` when the arena is too small. `set_input`, `invoke`
  and `get_output` move data in and out and run the operators. Only `RELU` and
  `SOFTMAX` compute anything. `FULLY_CONNECTED` does nothing, and any other
  operator raises `ModelError`.
- `aionml.trainer` has `Trainer`, configured by `TrainingConfig`:
  - Optimizers are SGD and Adam. `RMSPROP` is accepted but leaves the weights
    as they are.
  - Losses are MSE and cross-entropy. `BINARY_CROSS_ENTROPY` always gives 0.
  - It can `train`, `evaluate` and `fine_tune` on a `Dataset`.
  - `federated_update` averages gradients from several devices; a device that
    sent `None` counts as zeros.
  - `save_checkpoint` writes the epoch, the loss and the loss history as
    little-endian binary.
- `aionml.quantizer` covers:
  - `dynamic_quant` and `ptq_int8`, which quantize to INT8 and return a
    `QuantizedModel`.
  - `fp16` and `float_to_fp16`, which convert to truncated FP16 bit patterns.
  - `prune`, which returns the number of parameters pruned and the number
    examined.
  - `fuse_ops`, which counts Conv2D+ReLU and FC+ReLU pairs.
- `aionml.lite` provides:
  - `load_model`, which reads a file and builds a fixed image-classification
    graph with input `[1, 224, 224, 3]` and output `[1, 1000]`.
  - `LiteInterpreter`, whose arena uses 16-byte alignment and raises
    `ArenaExhaustedError` when it runs out of room.
  - `quantize_tensor`, which quantizes values to INT8.
  - `conv2d`, a reference NHWC convolution.
- `aionml.distributed` has `DistributedAI`. It keeps a list of `DeviceInfo`
  and can do the following:
  - Register devices and pick one for a `DistributedTask` by compute power,
    load and GPU.
  - Run `inference`, which raises `NoDeviceError` when no device qualifies.
  - Split data (`train_data_parallel`) or a model (`shard_model`,
    `train_model_parallel`) across devices.
  - Run `federated_train` rounds, `sync_model`, and produce a text report with
    `monitor`.
- `aionml.repository` has `ModelRepository`, a catalogue of five built-in
  models (`BUILTIN_MODELS`) tracked against files in a cache directory. The
  default directory is `/var/aion/models`. It offers `get`, `download`,
  `load`, `exists`, `get_or_download` and `clear_cache`. Missing models raise
  `ModelNotFoundError`; models that are known but not cached raise
  `ModelUnavailableError`.
- `aionml.bert` has `BertEngine`. It tokenizes text against a vocabulary from
  `load_vocab`, with a small built-in fallback, and obtains embeddings from an
  encoder you supply. The encoder takes 512 token ids as floats and must
  return 768 floats. `classify_intent` classifies intent by keyword and
  returns an `NlpResult` with an `Intent` and a confidence. `similarity`
  gives the cosine similarity of two texts.

## Install

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

A small network:

```python
import random
from aionml.network import NeuralNetwork

net = NeuralNetwork([8, 16, 8, 1], random.Random(0))
print(net.predict([0.0] * 8))   # a list holding one value between 0 and 1
```

Intent classification:

```python
from aionml.bert import BertEngine

engine = BertEngine(lambda tokens: (list(tokens) * 2)[:768], None)
result = engine.classify_intent("kill process 42")
print(result.intent, result.confidence)   # Intent.PROCESS_CONTROL 0.82
```

## What the package does not do

- It does not parse real model files. Both loaders build a fixed graph, and
  `LiteInterpreter.invoke` only times a pass over the operators.
- `Trainer` does not backpropagate. A training step computes the loss, but
  the weights change only from gradients that `federated_update` has stored.
- Nothing here talks to a network. `DistributedAI.discover_devices` registers
  two fixed example devices. Sending models, data and gradients to other
  devices is only logged.
- `ModelRepository.download` fetches nothing. It marks the model as cached
  and adds its size to the cache total. `load` then reads whatever file is
  already at the model's `local_path`.
- There is no command-line program.