import unittest
import doctest
import sys

import dkimlib
import dkimlib.asn1
import dkimlib.canonicalization
import dkimlib.digest
import dkimlib.signature
from dkimlib.tests import test_suite

failures = 0
for module in (dkimlib, dkimlib.asn1, dkimlib.canonicalization,
               dkimlib.digest, dkimlib.signature):
    failures += doctest.testmod(module).failed
result = unittest.TextTestRunner().run(test_suite())
sys.exit(bool(failures or not result.wasSuccessful()))
