from emberline.assets.base import AssetType, MovementCategory


class Nanobot(AssetType):
    """Soil swarm node; capacity counts moisture-retention injections."""

    type_id = "nanobot"
    display_name = "Soil Nanobot Swarm"
    icon = "N"
    category = MovementCategory.SOIL
    speed_mps = 1.0
    capacity_unit = "injections"
    liters_per_unit = 0.2
    service_minutes = 5.0
    default_capacity = 200.0
    default_battery_j = 5.0e4
    default_recharge_interval_h = 4.0  # RF / solar harvesting window
