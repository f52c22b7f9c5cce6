class NpyWriterError(Exception):
  """
  Base class of the errors raised while encoding an array.
  """


class HeaderTooLargeError(NpyWriterError, ValueError):
  """
  The padded header does not fit in the 16-bit length field of the format.
  """

  def __init__(self, header_len: int, /):
    super().__init__(f"Header length {header_len} exceeds the maximum of 65535 bytes")
    self.header_len = header_len


class UnsupportedDTypeError(NpyWriterError, TypeError):
  """
  The element type cannot be written, or cannot be safely cast to the requested one.
  """


class WriteFailedError(NpyWriterError, OSError):
  """
  The output file rejected a write. The original error is available as `__cause__`.
  """


__all__ = [
  'HeaderTooLargeError',
  'NpyWriterError',
  'UnsupportedDTypeError',
  'WriteFailedError'
]
