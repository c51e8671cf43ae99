import os
import importlib.metadata

import cnrefine


__version__ = importlib.metadata.version(cnrefine.__name__)


#####################################################################################################
# set numpy threads (https://stackoverflow.com/questions/30791550/limit-number-of-threads-in-numpy) #
#####################################################################################################

os.environ.setdefault("OMP_NUM_THREADS", "1")
os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")
os.environ.setdefault("MKL_NUM_THREADS", "1")
