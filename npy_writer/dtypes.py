from dataclasses import dataclass
import sys
from typing import Literal, Optional, cast

import numpy as np

from .errors import UnsupportedDTypeError


ByteOrder = Literal['big', 'little', 'native']
Endian = Literal['<', '>']


@dataclass(frozen=True, kw_only=True)
class DType:
  """
  A supported element type.

  Attributes
    name: The NumPy name of the type.
    tag: The type code written in the `descr` entry of the header, without the endian symbol.
    itemsize: The size of one element, in bytes.
  """

  name: str
  tag: str
  itemsize: int

  def numpy_dtype(self, *, endian: str):
    return np.dtype(endian + self.tag)

  def encode(self, values: np.ndarray, /, *, endian: Endian):
    """
    Encodes a block of elements as raw bytes.

    Parameters
      values: The elements, in the order in which they are to be written.
      endian: The byte order of the output, either `<` or `>`.
    """

    data = cast(bytes, np.asarray(values, dtype=self.numpy_dtype(endian=endian)).tobytes())
    assert len(data) == values.size * self.itemsize

    return data


FLOAT32 = DType(name='float32', tag='f4', itemsize=4)
FLOAT64 = DType(name='float64', tag='f8', itemsize=8)

DTYPES = {
  FLOAT32.tag: FLOAT32,
  FLOAT64.tag: FLOAT64
}


def resolve_byte_order(byte_order: ByteOrder, /) -> Endian:
  match byte_order:
    case 'little':
      return '<'
    case 'big':
      return '>'
    case 'native':
      return '<' if sys.byteorder == 'little' else '>'
    case _:
      raise ValueError(f"Invalid byte order: {byte_order!r}")

def resolve_dtype(arr_dtype: np.dtype, /, requested: Optional[np.dtype | str | type] = None):
  """
  Finds the element type to write for an array.

  Parameters
    arr_dtype: The dtype of the array.
    requested: The dtype to cast the array to, if any. The cast must be safe.
  """

  if requested is None:
    target = arr_dtype
  else:
    try:
      target = np.dtype(requested)
    except TypeError as e:
      raise UnsupportedDTypeError(f"Invalid dtype: {requested!r}") from e

  dtype = DTYPES.get(f"{target.kind}{target.itemsize}") if target.names is None else None

  if dtype is None:
    raise UnsupportedDTypeError(f"Unsupported dtype: {target}")

  if not np.can_cast(arr_dtype, dtype.numpy_dtype(endian='='), casting='safe'):
    raise UnsupportedDTypeError(f"Cannot safely cast {arr_dtype} to {dtype.name}")

  return dtype


__all__ = [
  'ByteOrder',
  'DTYPES',
  'DType',
  'Endian',
  'FLOAT32',
  'FLOAT64',
  'resolve_byte_order',
  'resolve_dtype'
]
