# bms_stand_alone_test_pylontech_lv.py
"""
A standalone test script for plugins/battery/pylontech_lv_plugin.
This script loads configuration from config.ini and runs a few poll cycles
against a real battery without starting the full monitoring application.

Instructions:
1. Configure your battery under [PLUGIN_Battery1] in config.ini
   (see config.ini.example).
2. Run the script from your terminal: python test_plugins/bms_stand_alone_test_pylontech_lv.py

Optional: You can override the config instance name and the number of cycles
by setting environment variables:
   export BMS_INSTANCE_NAME=Battery2
   export BMS_CYCLES=10
   python test_plugins/bms_stand_alone_test_pylontech_lv.py

Set LOG_LEVEL=DEBUG to see every request frame and a hexdump of every response.
"""
import logging
import time
import sys
import os

# --- Setup Project Path ---
# This allows the script to find project modules (like the plugin itself).
current_script_dir = os.path.dirname(os.path.abspath(__file__))
project_root_dir = os.path.dirname(current_script_dir)
if project_root_dir not in sys.path:
    sys.path.insert(0, project_root_dir)

# Now, project-level imports will work
from plugins.battery.pylontech_lv_plugin import PylontechLowVoltageBMS
from test_plugins.test_config_loader import load_bms_config_from_file
from utils.helpers import STATUS_CONNECTED, format_value


if __name__ == "__main__":
    log_level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=log_level, format='%(asctime)s %(levelname)-8s [%(threadName)s] %(message)s')
    logger = logging.getLogger("PylontechLVStandaloneTest")

    # --- Load Configuration from config.ini ---
    config_file_path = os.path.join(project_root_dir, "config.ini")
    bms_instance_name = os.environ.get("BMS_INSTANCE_NAME", "Battery1")
    cycles = int(os.environ.get("BMS_CYCLES", "5"))

    try:
        pylon_config = load_bms_config_from_file(config_file_path, bms_instance_name)
        logger.info(f"Loaded configuration for instance '{bms_instance_name}' from {config_file_path}: {pylon_config}")
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        logger.error(f"Please ensure config.ini exists and contains a [PLUGIN_{bms_instance_name}] section.")
        sys.exit(1)

    # The standalone run always polls, even for an instance disabled in config.ini
    pylon_config.pop("disable", None)
    plugin = PylontechLowVoltageBMS(
        instance_name=bms_instance_name,
        plugin_specific_config=pylon_config,
        main_logger=logger
    )
    if plugin.config_error:
        logger.error(plugin.config_error)
        sys.exit(1)

    pause = plugin.poll_interval or 3
    try:
        for i in range(cycles):
            logger.info(f"--- Poll Cycle {i + 1}/{cycles} ---")
            data = plugin.run_cycle()
            if data.get("state") == STATUS_CONNECTED:
                logger.info(f"Cycle complete, {len(data)} readings:")
            else:
                logger.error(f"Cycle failed: {data.get('state')}")
            for key in sorted(data):
                logger.info(f"  {key:<40}: {format_value(data[key], 3)}")
            if i < cycles - 1:
                time.sleep(pause)
    except KeyboardInterrupt:
        logger.info("Test interrupted by user.")
    finally:
        plugin.disconnect()
        logger.info("Disconnected from battery.")
