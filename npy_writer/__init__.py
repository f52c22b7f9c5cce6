from .dtypes import *
from .errors import *
from .npy import *
from .npy_utils import *
