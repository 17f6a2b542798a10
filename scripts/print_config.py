from adaptive_dash.config_model.model import load_config
cfg = load_config()  # reads config/config.toml by default
print("Project:", cfg.env.project_name)
print("Timezone:", cfg.env.timezone)
print("Detector sample rows:", cfg.detector.sample_rows)
print("Aggregation max rows:", cfg.aggregation.max_rows)
print("Gate lookback days:", cfg.gate.lookback_days)
