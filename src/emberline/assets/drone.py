from emberline.assets.base import AssetType, MovementCategory


class Drone(AssetType):
    type_id = "drone"
    display_name = "Delivery Drone"
    icon = "D"
    category = MovementCategory.AIR
    speed_mps = 12.0
    service_minutes = 2.0
    default_capacity = 20.0
    default_battery_j = 1.8e6  # 500 Wh pack
    default_recharge_interval_h = 4.0
