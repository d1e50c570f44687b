# Symbols kept warm by the scheduled refresh job; edits are picked up by the sensor.
track = [
    "AAPL",
    "MSFT",
    "GOOG",
    "FXAIX",
    "VFIAX",
    "NHFSMKX98",
]
