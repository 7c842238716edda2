import unittest

from crowbackend.names import is_valid_name


class NameValidatorTests(unittest.TestCase):
    def test_length_bounds_after_trimming(self):
        self.assertTrue(is_valid_name("hi"))
        self.assertTrue(is_valid_name("  Edgar  "))
        self.assertTrue(is_valid_name("x" * 30))
        self.assertFalse(is_valid_name("a"))
        self.assertFalse(is_valid_name("  a  "))
        self.assertFalse(is_valid_name("x" * 31))
        self.assertFalse(is_valid_name(""))
        self.assertFalse(is_valid_name(None))

    def test_profanity_is_rejected(self):
        self.assertFalse(is_valid_name("shit"))
        self.assertFalse(is_valid_name("Big SHIT"))


if __name__ == "__main__":
    unittest.main()
