import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import logger as logging_setup
from settings import Settings


class TestLoggerSetup(unittest.TestCase):

    def tearDown(self):
        logging_setup.setup_logger()

    def test_file_sink_writes_json_lines(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "nested" / "app.log"
            with mock.patch("logger.get_settings", return_value=Settings(log_file=log_file)):
                logging_setup.setup_logger()
            logging_setup.logger.info("swipe recorded")
            logging_setup.logger.remove()

            record = json.loads(log_file.read_text().splitlines()[-1])
            self.assertEqual(record["record"]["message"], "swipe recorded")

    def test_no_file_sink_without_log_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with mock.patch("logger.get_settings", return_value=Settings(log_file=None)):
                logging_setup.setup_logger()
            logging_setup.logger.info("console only")
            self.assertEqual(list(Path(tmp).iterdir()), [])


if __name__ == "__main__":
    unittest.main()
