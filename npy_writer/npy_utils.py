import struct
from typing import Sequence

from .dtypes import DTYPES, DType
from .errors import HeaderTooLargeError, UnsupportedDTypeError


MAGIC_PREFIX = b"\x93NUMPY"
NPY_VERSION = b"\x01\x00"
HEADER_LEN_FORMAT = "<H"
PREAMBLE_LEN = len(MAGIC_PREFIX) + len(NPY_VERSION) + struct.calcsize(HEADER_LEN_FORMAT)
ARRAY_ALIGN = 16
MAX_HEADER_LEN = 2 ** 16 - 1
BUFFER_SIZE = 2 ** 16

ENDIAN_SYMBOLS = ('<', '>', '=')


def build_header(*, dtype_tag: str, endian: str, shape: Sequence[int]):
  if dtype_tag not in DTYPES:
    raise UnsupportedDTypeError(f"Unsupported dtype tag: {dtype_tag!r}")
  if endian not in ENDIAN_SYMBOLS:
    raise ValueError(f"Invalid endian symbol: {endian!r}")

  for dim in shape:
    if isinstance(dim, bool) or not isinstance(dim, int) or dim < 0:
      raise ValueError(f"Invalid dimension: {dim!r}")

  shape_str = ",".join(str(dim) for dim in shape)

  # (4) would be read back as an integer
  if len(shape) == 1:
    shape_str += ","

  return f"{{'descr': '{endian}{dtype_tag}','fortran_order': False,'shape': ({shape_str})}}\n"

def get_padding(header_len: int, /):
  return (ARRAY_ALIGN - (PREAMBLE_LEN + header_len) % ARRAY_ALIGN) % ARRAY_ALIGN

def encode_npy_header(*, dtype: DType, endian: str, shape: Sequence[int]):
  """
  Encodes everything that precedes the array data: the magic prefix, the version, the header length and the padded header.

  Raises
    HeaderTooLargeError: If the padded header does not fit in 16 bits.
  """

  header = build_header(dtype_tag=dtype.tag, endian=endian, shape=shape).encode()
  padding = get_padding(len(header))
  header_len = len(header) + padding

  assert (PREAMBLE_LEN + header_len) % ARRAY_ALIGN == 0, "Invalid alignment of the header"

  if header_len > MAX_HEADER_LEN:
    raise HeaderTooLargeError(header_len)

  return MAGIC_PREFIX + NPY_VERSION + struct.pack(HEADER_LEN_FORMAT, header_len) + header + (b" " * padding)


__all__ = [
  'ARRAY_ALIGN',
  'MAGIC_PREFIX',
  'NPY_VERSION',
  'build_header',
  'encode_npy_header',
  'get_padding'
]
