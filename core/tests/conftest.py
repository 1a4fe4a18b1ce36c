import os

# Use litellm's bundled model cost map instead of fetching it over the network
# in a background thread, which races test-module imports without network.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
