"""Pool parameters shared across the stable pool core.

Values mirror the limits enforced by the on-chain composable stable pool.
"""

# Share token issued in full at initialization; only the part held outside
# the pool's custody (the virtual supply) is economically meaningful.
PREMINTED_SHARE_BALANCE = 2**111

# Share amount locked forever at initialization
MINIMUM_SHARE = 10**6

# Token count bounds (excluding the share token)
MIN_TOKENS = 2
MAX_TOKENS = 5

# Amplification bounds (raw, unscaled by AMP_PRECISION)
MIN_AMP = 1
MAX_AMP = 5000

# Ramps must last at least a day and at most double (or halve) the value per day
MIN_UPDATE_TIME = 24 * 60 * 60
MAX_AMP_UPDATE_DAILY_RATE = 2

# Pool swap fee bounds (18-decimal fixed point): 0.0001% and 10%
MIN_SWAP_FEE_PERCENTAGE = 10**12
MAX_SWAP_FEE_PERCENTAGE = 10**17

# Protocol fee percentages are capped at 100% (18-decimal fixed point)
MAX_PROTOCOL_FEE_PERCENTAGE = 10**18
