from typing import IO, Iterator

import numpy as np


def iter_array_chunks(arr: np.ndarray, *, buffer_size: int, dtype: np.dtype) -> Iterator[np.ndarray]:
  """
  Iterates over the elements of an array in C order, in blocks of at most `buffer_size` elements safely cast to `dtype`.
  """

  for chunk in np.nditer(
    arr,
    buffersize=buffer_size,
    casting='safe',
    flags=['buffered', 'external_loop', 'zerosize_ok'],
    op_dtypes=[dtype],
    order='C'
  ):
    yield chunk

def write_all(file: IO[bytes], data: bytes, /):
  """
  Writes `data` to `file`, retrying after partial writes of unbuffered files.

  Returns the number of bytes written.
  """

  remaining = data

  while remaining:
    written = file.write(remaining)

    # File-like objects that do not report a count are assumed to have written everything.
    if written is None:
      break
    if written < 1:
      raise OSError("Write returned no bytes")

    remaining = remaining[written:]

  return len(data)
