# config.py

import os
from datetime import date

STOCK_SYMBOL = os.getenv("STOCKCAST_SYMBOL", "^GSPC")
START_DATE = os.getenv("STOCKCAST_START_DATE", "2015-01-01")
END_DATE = date.today().strftime("%Y-%m-%d")  # auto-updates each day

WINDOW_SIZE = int(os.getenv("STOCKCAST_WINDOW_SIZE", 60))
PREDICTION_HORIZON = int(os.getenv("STOCKCAST_PREDICTION_HORIZON", 5))
SPLIT_RATIO = float(os.getenv("STOCKCAST_SPLIT_RATIO", 0.9))

EPOCHS = int(os.getenv("STOCKCAST_EPOCHS", 12))
BATCH_SIZE = int(os.getenv("STOCKCAST_BATCH_SIZE", 256))
HIDDEN_UNITS = 16
RECURRENT_CELL = os.getenv("STOCKCAST_RECURRENT_CELL", "gru")
RANDOM_SEED = 42

# training loop pacing
PROGRESS_INTERVAL_S = 0.5
YIELD_EVERY_EPOCHS = 3

TRADING_DAYS = 252
ROLLING_VOL_WINDOW = 20

OUTPUTS_DIR = os.getenv("STOCKCAST_OUTPUTS_DIR", "outputs")
MODELS_DIR = os.getenv("STOCKCAST_MODELS_DIR", "models")

LOG_LEVEL = os.getenv("STOCKCAST_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s"
