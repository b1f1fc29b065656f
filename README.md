# lightgpt

A compact toolkit for experimenting with transformer inference in Python.
It bundles:

- **GGUF inspection** (`lightgpt.gguf`): read the header, skip the metadata
  section and list tensor definitions (name, dimensions, type, offset) of a
  GGUF model file, and peek at the first values of chosen tensors.
- **Attention** (`lightgpt.attention`): a simplified self-attention pass over
  a `[seq_len, hidden_size]` block of embeddings, plus mock embeddings built
  from token ids.
- **Chat pipeline** (`lightgpt.chat`): a tiny word-level tokenizer, query
  normalisation, and a knowledge-base question answerer that runs the full
  tokenize → embed → attend → respond pipeline on a validated GGUF file.
- **Numeric kernels** (`lightgpt.optimizations`): matrix multiplication,
  tanh-approximated GELU, INT8 quantisation and dequantisation, a bump-pointer
  memory pool and a chunked parallel loop.
- **Generation utilities** (`lightgpt.inference`): an LRU token-window cache,
  top-k / nucleus sampling with temperature, streamed generation with a
  per-token callback, and a background batch-processing worker.

## Installation

```
pip install .
```

The only runtime dependency is `numpy`. To run the test suite:

```
pip install ".[test]"
pytest
```

## Command-line tools

Inspect the tensors in a model file:

```
lightgpt-weights models/model.gguf
```

Run the attention demonstration on a small all-ones input:

```
lightgpt-attention
```

Load a GGUF file and answer the built-in test questions:

```
lightgpt-chat models/model.gguf
```

Start a question-and-answer session (type `quit` to leave):

```
lightgpt-interactive models/model.gguf
```

Each tool exits with status 1 when no model path is given or the file cannot
be opened or is not a GGUF file.

## Library use

### Tokenising and answering

```python
from lightgpt.chat import SimpleTokenizer, TransformerModel, normalize_query

tokenizer = SimpleTokenizer()
tokenizer.encode("What is the capital of France?")
# [1, 1724, 338, 278, 7483, 310, 3444, 29973]

normalize_query("What is AI?")
# 'what is ai'

model = TransformerModel()
model.load("models/model.gguf")
model.generate("What is the capital of Italy?")
# 'Rome'
```

Unknown words encode to `0`; the sequence always starts with the BOS id `1`.
Loading a file that is missing or does not start with the `GGUF` magic raises
`ChatError`.

### Reading GGUF tensor definitions

```python
from lightgpt.gguf import load_tensor_infos, count_matching

tensors = load_tensor_infos("models/model.gguf")
count_matching(tensors, "attn")
tensors[0].param_count()
```

Malformed or unreadable files raise `GGUFError`.

### Kernels

```python
import numpy as np
from lightgpt.optimizations import gemm, gelu, quantize_int8, dequantize_int8

a = np.ones((2, 3), dtype=np.float32)
b = np.ones((3, 4), dtype=np.float32)
gemm(a, b)          # every entry equals 3.0

gelu(np.array([0.0, 1.0], dtype=np.float32))
```

`quantize_int8` returns the INT8 values together with their
`QuantizationParams` (scale and zero point), which `dequantize_int8` uses to
restore approximate floats.

### Sampling and generation

`AdvancedSampler` draws a token id from logits after temperature scaling,
top-k truncation and nucleus (top-p) filtering. `StreamedInference` prefills a
prompt in chunks (reusing `TokenCache` entries where a window repeats) and
then generates until `max_length` is reached, an end token (`0`) is drawn or
`stop()` is called. `BatchInference` collects submitted requests on a worker
thread and resolves each one with the generated token sequence.