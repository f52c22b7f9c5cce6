import logging
import os
from typing import IO, Any, Optional

import numpy as np

from .dtypes import ByteOrder, DType, Endian, resolve_byte_order, resolve_dtype
from .errors import WriteFailedError
from .npy_utils import BUFFER_SIZE, encode_npy_header
from .utils import iter_array_chunks, write_all


logger = logging.getLogger(__name__)


def write(
  file: IO[bytes],
  arr: Any,
  /,
  *,
  byte_order: ByteOrder = 'native',
  dtype: Optional[np.dtype | str | type] = None
):
  """
  Writes an array to a binary file in the npy format.

  The elements are always written in C order, whatever the memory layout of the array. The file is only written to sequentially; it is neither flushed nor closed.

  Parameters
    file: The output binary file.
    arr: The array to write. Other array-likes are converted with `np.asarray()`.
    byte_order: The byte order of the elements, either `little`, `big` or `native`.
    dtype: The dtype to write, either `f4` or `f8`. Defaults to the dtype of the array, which must then be one of these. The array must be safely castable to it.

  Returns
    The number of bytes written.

  Raises
    HeaderTooLargeError: If the header does not fit in the format. Nothing is written in that case.
    UnsupportedDTypeError: If the dtype cannot be written. Nothing is written in that case.
    WriteFailedError: If the file failed to write, including writes to a closed file. The remaining data is not written.
  """

  return _write_prepared(file, *_prepare(arr, byte_order=byte_order, dtype=dtype))

def save(
  path: str | os.PathLike,
  arr: Any,
  /,
  *,
  byte_order: ByteOrder = 'native',
  dtype: Optional[np.dtype | str | type] = None
):
  """
  Writes an array to a new file in the npy format.

  See write() for details. The file is only created once the array and its header have been validated.
  """

  prepared = _prepare(arr, byte_order=byte_order, dtype=dtype)

  with open(path, "wb") as file:
    return _write_prepared(file, *prepared)


def _prepare(arr: Any, /, *, byte_order: ByteOrder, dtype: Optional[np.dtype | str | type]):
  endian = resolve_byte_order(byte_order)
  arr = np.asarray(arr)
  array_dtype = resolve_dtype(arr.dtype, dtype)
  header = encode_npy_header(dtype=array_dtype, endian=endian, shape=arr.shape)

  return arr, array_dtype, endian, header

def _write_prepared(file: IO[bytes], arr: np.ndarray, array_dtype: DType, endian: Endian, header: bytes, /):
  logger.debug("Writing array of dtype %s%s with shape %r, header of %d bytes", endian, array_dtype.tag, arr.shape, len(header))

  try:
    bytes_written = write_all(file, header)

    for chunk in iter_array_chunks(arr, buffer_size=BUFFER_SIZE, dtype=array_dtype.numpy_dtype(endian=endian)):
      bytes_written += write_all(file, array_dtype.encode(chunk, endian=endian))
  # Closed files raise ValueError
  except (OSError, ValueError) as e:
    raise WriteFailedError(f"Failed to write array: {e}") from e

  logger.debug("Wrote %d bytes", bytes_written)
  return bytes_written


__all__ = [
  'save',
  'write'
]
