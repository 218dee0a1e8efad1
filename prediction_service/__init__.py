"""
Prediction Service Module

Estimates whether a level-crossing gate is open, closed or about to close by
combining crowd reports, train arrival data and time-of-day heuristics.
"""
# Remain light; import submodules directly where needed.
# from . import status_predictor
# from . import consensus
# from . import train_proximity
