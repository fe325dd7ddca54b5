from emberline.assets.base import AssetType, MovementCategory


class Truck(AssetType):
    type_id = "truck"
    display_name = "Water Truck"
    icon = "T"
    category = MovementCategory.GROUND
    speed_mps = 10.0
    service_minutes = 15.0
    default_capacity = 4000.0
    default_battery_j = 2.0e6
    default_recharge_interval_h = 1.0
