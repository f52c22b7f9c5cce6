from io import BytesIO
from pathlib import Path
import struct
import subprocess
import sys
from tempfile import TemporaryDirectory, TemporaryFile
from unittest import TestCase
from unittest.mock import patch
import numpy as np
import unittest
import warnings

from .npy_utils import BUFFER_SIZE
from . import (
  FLOAT32,
  FLOAT64,
  HeaderTooLargeError,
  UnsupportedDTypeError,
  WriteFailedError,
  build_header,
  encode_npy_header,
  get_padding,
  save,
  write
)


NATIVE_ENDIAN = '<' if sys.byteorder == 'little' else '>'


def split_output(data: bytes):
  header_len, = struct.unpack("<H", data[8:10])
  return data[:10], data[10:(10 + header_len)], data[(10 + header_len):]


class FailingFile:
  def __init__(self, *, fail_at: int):
    self.calls = 0
    self.data = bytearray()
    self._fail_at = fail_at

  def write(self, data: bytes):
    self.calls += 1

    if self.calls >= self._fail_at:
      raise OSError(28, "No space left on device")

    self.data += data
    return len(data)


class SlowFile:
  def __init__(self, *, max_size: int):
    self.data = bytearray()
    self._max_size = max_size

  def write(self, data: bytes):
    chunk = bytes(data[:self._max_size])
    self.data += chunk
    return len(chunk)


class HeaderTest(TestCase):
  def test_scenario(self):
    self.assertEqual(
      build_header(dtype_tag='f8', endian='<', shape=(3, 4)),
      "{'descr': '<f8','fortran_order': False,'shape': (3,4)}\n"
    )

  def test_scalar(self):
    self.assertEqual(
      build_header(dtype_tag='f4', endian='>', shape=()),
      "{'descr': '>f4','fortran_order': False,'shape': ()}\n"
    )

  def test_one_dimension(self):
    self.assertEqual(
      build_header(dtype_tag='f4', endian='=', shape=[4]),
      "{'descr': '=f4','fortran_order': False,'shape': (4,)}\n"
    )

  def test_single_line(self):
    header = build_header(dtype_tag='f8', endian='<', shape=(2, 0, 3))

    self.assertTrue(header.endswith("\n"))
    self.assertEqual(header.count("\n"), 1)

  def test_invalid_arguments(self):
    with self.assertRaises(UnsupportedDTypeError):
      build_header(dtype_tag='i4', endian='<', shape=(3,))

    with self.assertRaises(ValueError):
      build_header(dtype_tag='f4', endian='|', shape=(3,))

    with self.assertRaises(ValueError):
      build_header(dtype_tag='f4', endian='<', shape=(3, -1))

  def test_padding(self):
    for header_len in range(256):
      padding = get_padding(header_len)

      self.assertGreaterEqual(padding, 0)
      self.assertLess(padding, 16)
      self.assertEqual((10 + header_len + padding) % 16, 0)

  def test_padding_on_boundary(self):
    header = build_header(dtype_tag='f8', endian='<', shape=(5,))

    self.assertEqual((10 + len(header)) % 16, 0)
    self.assertEqual(get_padding(len(header)), 0)
    self.assertEqual(len(encode_npy_header(dtype=FLOAT64, endian='<', shape=(5,))), 10 + len(header))

  def test_alignment(self):
    for ndim in range(12):
      shape = tuple(range(7, 7 + ndim))
      prefix, header, _ = split_output(encode_npy_header(dtype=FLOAT32, endian='<', shape=shape))

      self.assertEqual((len(prefix) + len(header)) % 16, 0)
      self.assertEqual(header.rstrip(b" "), build_header(dtype_tag='f4', endian='<', shape=shape).encode())

  def test_too_large(self):
    with self.assertRaises(HeaderTooLargeError) as context:
      encode_npy_header(dtype=FLOAT64, endian='<', shape=((1,) * 40000))

    self.assertGreater(context.exception.header_len, 65535)


class WriterTest(TestCase):
  def test_scenario(self):
    file = BytesIO()
    write(file, np.zeros((3, 4), dtype='f8'), byte_order='little')
    data = file.getvalue()

    prefix, header, payload = split_output(data)
    expected_header = b"{'descr': '<f8','fortran_order': False,'shape': (3,4)}\n"

    self.assertTrue(data.startswith(b"\x93NUMPY\x01\x00"))
    self.assertEqual(prefix[8:10], struct.pack("<H", len(header)))
    self.assertEqual(header, expected_header + b" " * (len(header) - len(expected_header)))
    self.assertEqual((10 + len(header)) % 16, 0)
    self.assertEqual(payload, bytes(96))

  def test_native(self):
    file = BytesIO()
    write(file, np.zeros((3, 4), dtype='f8'))

    _, header, _ = split_output(file.getvalue())
    self.assertIn(f"'descr': '{NATIVE_ENDIAN}f8'".encode(), header)

  def test_scalar(self):
    file = BytesIO()
    bytes_written = write(file, np.float32(1.5), byte_order='big')

    _, header, payload = split_output(file.getvalue())

    self.assertIn(b"'shape': ()}", header)
    self.assertEqual(payload, struct.pack(">f", 1.5))
    self.assertEqual(bytes_written, len(file.getvalue()))

    file.seek(0)
    loaded: np.ndarray = np.load(file)

    self.assertEqual(loaded.shape, ())
    self.assertEqual(loaded.dtype, np.dtype('>f4'))
    self.assertEqual(loaded, 1.5)

  def test_round_trip(self):
    for dtype in ['f4', 'f8']:
      for byte_order in ['little', 'big', 'native']:
        for shape in [(), (0,), (4,), (3, 4), (2, 0, 3), (2, 3, 4)]:
          with self.subTest(dtype=dtype, byte_order=byte_order, shape=shape):
            arr = np.asarray(np.random.rand(*shape)).astype(dtype)
            file = BytesIO()

            write(file, arr, byte_order=byte_order)

            file.seek(0)
            loaded: np.ndarray = np.load(file)

            self.assertEqual(loaded.shape, arr.shape)
            self.assertEqual(loaded.dtype.str[1:], dtype)
            self.assertTrue(np.array_equal(loaded, arr))

  def test_endian(self):
    arr = np.arange(6, dtype='f8') + 0.25

    for byte_order, symbol in [('little', '<'), ('big', '>')]:
      file = BytesIO()
      write(file, arr, byte_order=byte_order)

      _, header, payload = split_output(file.getvalue())

      self.assertIn(f"'descr': '{symbol}f8'".encode(), header)
      self.assertEqual(struct.unpack(f"{symbol}6d", payload), tuple(arr.tolist()))

  def test_byte_swapped_input(self):
    arr = np.arange(5, dtype='>f4')
    file = BytesIO()

    write(file, arr, byte_order='little')

    _, _, payload = split_output(file.getvalue())
    self.assertEqual(payload, np.arange(5, dtype='<f4').tobytes())

  def test_row_major(self):
    arr = np.arange(24, dtype='f8').reshape(2, 3, 4)

    for source in [arr, np.asfortranarray(arr), arr[:, ::2, :], np.moveaxis(arr, 0, -1)]:
      file = BytesIO()
      write(file, source, byte_order='little')

      _, header, payload = split_output(file.getvalue())

      self.assertIn(b"'fortran_order': False", header)
      self.assertEqual(payload, np.ascontiguousarray(source, dtype='<f8').tobytes())

  def test_accept_fortran_order(self):
    with TemporaryFile() as file:
      arr = np.random.rand(30, 3, 6)

      write(file, np.asfortranarray(arr))

      file.seek(0)
      loaded: np.ndarray = np.load(file)

      self.assertTrue(np.array_equal(loaded, arr))
      self.assertTrue(loaded.flags.c_contiguous)

  def test_large(self):
    with TemporaryFile() as file:
      arr = np.random.rand(300, 500)

      bytes_written = write(file, arr.T, byte_order='big')
      self.assertEqual(file.tell(), bytes_written)

      file.seek(0)
      self.assertTrue(np.array_equal(np.load(file), arr.T))

  def test_deterministic(self):
    arr = np.random.rand(7, 5).astype('f4')
    a = BytesIO()
    b = BytesIO()

    write(a, arr, byte_order='big')
    write(b, arr.copy(), byte_order='big')

    self.assertEqual(a.getvalue(), b.getvalue())

  def test_array_like(self):
    file = BytesIO()
    write(file, [[1.0, 2.0], [3.0, 4.0]])

    file.seek(0)
    loaded: np.ndarray = np.load(file)

    self.assertEqual(loaded.dtype, np.dtype('f8'))
    self.assertTrue(np.array_equal(loaded, [[1.0, 2.0], [3.0, 4.0]]))

  def test_cast(self):
    shape = (3, 4)

    for dtype in ['f2', 'f4', 'u2', 'i2']:
      with self.subTest(dtype=dtype):
        file = BytesIO()
        write(file, np.ones(shape, dtype=dtype), dtype='f4')

        file.seek(0)
        loaded: np.ndarray = np.load(file)

        self.assertEqual(loaded.dtype, np.dtype('f4'))
        self.assertTrue(np.array_equal(loaded, np.ones(shape)))

    for dtype in ['f8', 'u4', 'i4']:
      with self.subTest(dtype=dtype):
        file = BytesIO()

        with self.assertRaises(TypeError):
          write(file, np.zeros(shape, dtype=dtype), dtype=np.float32)

        self.assertEqual(file.getvalue(), b"")

    file = BytesIO()
    write(file, np.zeros(shape, dtype='f4'), dtype='f8')

    file.seek(0)
    self.assertEqual(np.load(file).dtype, np.dtype('f8'))

  def test_unsupported_dtype(self):
    for arr in [np.zeros(3, dtype='i8'), np.zeros(3, dtype='c16'), np.zeros(3, dtype='f2'), np.zeros(3, dtype=[('a', 'f8')])]:
      with self.subTest(dtype=arr.dtype):
        file = BytesIO()

        with self.assertRaises(UnsupportedDTypeError):
          write(file, arr)

        self.assertEqual(file.getvalue(), b"")

    with self.assertRaises(UnsupportedDTypeError):
      write(BytesIO(), np.zeros(3), dtype='i8')

    with self.assertRaises(UnsupportedDTypeError):
      write(BytesIO(), np.zeros(3), dtype='not a dtype')

  def test_invalid_byte_order(self):
    file = BytesIO()

    with self.assertRaises(ValueError):
      write(file, np.zeros(3), byte_order='middle') # type: ignore

    self.assertEqual(file.getvalue(), b"")

  def test_header_too_large(self):
    file = BytesIO()

    with patch('npy_writer.npy_utils.build_header', return_value=("x" * 70000 + "\n")):
      with self.assertRaises(HeaderTooLargeError):
        write(file, np.zeros(3))

    self.assertEqual(file.getvalue(), b"")

  def test_write_failure(self):
    # The cast from f2 forces blocks of BUFFER_SIZE elements: one header write and three data writes.
    arr = np.zeros((3, BUFFER_SIZE), dtype='f2')

    complete = FailingFile(fail_at=100)
    write(complete, arr, dtype='f4')
    self.assertEqual(complete.calls, 4)

    file = FailingFile(fail_at=3)

    with self.assertRaises(WriteFailedError) as context:
      write(file, arr, dtype='f4')

    self.assertIsInstance(context.exception, OSError)
    self.assertIsInstance(context.exception.__cause__, OSError)
    self.assertEqual(context.exception.__cause__.errno, 28) # type: ignore
    self.assertEqual(file.calls, 3)
    self.assertEqual(len(file.data), len(complete.data) - 2 * BUFFER_SIZE * 4)

  def test_closed_file(self):
    file = BytesIO()
    file.close()

    with self.assertRaises(WriteFailedError) as context:
      write(file, np.zeros(3))

    self.assertIsInstance(context.exception.__cause__, ValueError)

  def test_header_write_failure(self):
    file = FailingFile(fail_at=1)

    with self.assertRaises(WriteFailedError):
      write(file, np.zeros((3, 4)))

    self.assertEqual(file.calls, 1)
    self.assertEqual(file.data, b"")

  def test_partial_writes(self):
    arr = np.random.rand(5, 7)
    expected = BytesIO()
    file = SlowFile(max_size=3)

    write(expected, arr)
    bytes_written = write(file, arr)

    self.assertEqual(bytes(file.data), expected.getvalue())
    self.assertEqual(bytes_written, len(expected.getvalue()))

  def test_stalled_write(self):
    with self.assertRaises(WriteFailedError):
      write(SlowFile(max_size=0), np.zeros(3))


class ReaderCompatibilityTest(TestCase):
  def _dump(self, arr: np.ndarray):
    file = BytesIO()
    write(file, arr, byte_order='little')
    file.seek(0)

    return file

  def test_padded_header(self):
    # Spaces after the newline are only accepted by NumPy's fallback parser for version 1.0 files.
    for shape in [(), (3, 4), (2, 0, 3), (1, 1, 1)]:
      with self.subTest(shape=shape):
        arr = np.zeros(shape)
        file = self._dump(arr)

        with self.assertWarns(UserWarning):
          loaded: np.ndarray = np.load(file)

        self.assertTrue(np.array_equal(loaded, arr))

  def test_unpadded_header(self):
    arr = np.arange(5, dtype='f8')
    file = self._dump(arr)

    with warnings.catch_warnings():
      warnings.simplefilter('error')
      loaded: np.ndarray = np.load(file)

    self.assertTrue(np.array_equal(loaded, arr))


class SaveTest(TestCase):
  def test_default(self):
    with TemporaryDirectory() as dir_path:
      path = Path(dir_path) / "test.npy"
      arr = np.random.rand(3, 4)

      bytes_written = save(path, arr)

      self.assertEqual(path.stat().st_size, bytes_written)
      self.assertTrue(np.array_equal(np.load(path), arr))

  def test_invalid(self):
    with TemporaryDirectory() as dir_path:
      path = Path(dir_path) / "test.npy"

      with self.assertRaises(UnsupportedDTypeError):
        save(path, np.zeros(3, dtype='i4'))

      self.assertFalse(path.exists())

  def test_external_interpreter(self):
    with TemporaryDirectory() as dir_path:
      arr = np.fromfunction(lambda i, j: i + j, (3, 4), dtype='f8')
      save(Path(dir_path) / "test.npy", arr)

      output = subprocess.run(
        [sys.executable, "-c", "import numpy; print(numpy.load('test.npy').tolist())"],
        capture_output=True,
        check=True,
        cwd=dir_path,
        text=True
      )

      self.assertEqual(output.stdout.strip(), str(arr.tolist()))


if __name__ == '__main__':
  unittest.main()
