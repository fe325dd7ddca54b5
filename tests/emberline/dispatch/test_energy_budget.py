"""Unit tests for EnergyBudgetModel — energy formulas, trips, recharge windows."""

from __future__ import annotations

import pytest

from emberline.assets.fleet import Asset
from emberline.dispatch.energy import (
    EnergyBudgetModel,
    drone_energy,
    nanobot_energy,
    trip_count,
    truck_energy,
)

pytestmark = pytest.mark.unit


def _make_asset(asset_type="drone", capacity=20.0, battery=1.8e6, interval=4.0, **kw) -> Asset:
    return Asset(asset_id=kw.pop("asset_id", "a1"), asset_type=asset_type, capacity=capacity,
                 depot=(0.0, 0.0), battery_j=battery, battery_max_j=kw.pop("battery_max", battery),
                 recharge_interval_h=interval, **kw)


class TestFormulas:
    def test_drone_reference_value(self):
        assert drone_energy(2000.0, 5.0) == pytest.approx(4500.0)

    def test_nanobot(self):
        assert nanobot_energy(100.0, 4) == pytest.approx(10.0 + 200.0)

    def test_truck(self):
        assert truck_energy(1000.0, 15.0) == pytest.approx(4000.0 + 3000.0)


class TestTripCount:
    def test_ceiling(self):
        assert trip_count(1500.0, 400.0) == 4

    def test_exact_multiple(self):
        assert trip_count(800.0, 400.0) == 2

    def test_no_volume(self):
        assert trip_count(0.0, 400.0) == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            trip_count(100.0, 0.0)


class TestTripEnergy:
    def test_drone_round_trip(self):
        model = EnergyBudgetModel()
        drone = _make_asset()
        # 2 x 1200 m at 12 m/s = 200 s airborne + 2 min on site
        airborne_min = 2400.0 / 12.0 / 60.0 + 2.0
        assert model.trip_energy(drone, 1200.0) == pytest.approx(drone_energy(2400.0, airborne_min))

    def test_nanobot_uses_full_load_of_injections(self):
        model = EnergyBudgetModel()
        bot = _make_asset("nanobot", capacity=200.0, battery=5e4)
        assert model.trip_energy(bot, 50.0) == pytest.approx(nanobot_energy(100.0, 200.0))

    def test_truck(self):
        model = EnergyBudgetModel()
        truck = _make_asset("truck", capacity=4000.0, battery=2e6, interval=1.0)
        assert model.trip_energy(truck, 1000.0) == pytest.approx(truck_energy(2000.0, 15.0))

    def test_estimate_multiplies_trips(self):
        model = EnergyBudgetModel()
        drone = _make_asset()
        est = model.estimate(drone, 500.0, 3)
        assert est.energy_j == pytest.approx(3 * est.per_trip_j)
        assert est.outbound_h == pytest.approx(500.0 / 12.0 / 3600.0)
        assert est.duration_h == pytest.approx(3 * model.trip_hours(drone, 500.0))
        assert est.feasible


class TestFeasibility:
    def test_battery_bound(self):
        model = EnergyBudgetModel()
        drone = _make_asset(battery=5000.0)
        assert model.is_feasible(drone, 5000.0)
        assert not model.is_feasible(drone, 5000.1)

    def test_affordable_trips_limited_by_battery(self):
        model = EnergyBudgetModel()
        drone = _make_asset(battery=10_000.0, battery_max=1.8e6)
        per_trip = model.trip_energy(drone, 1000.0)
        trips = model.affordable_trips(drone, 1000.0, wanted=50, time_budget_h=100.0)
        assert trips == int(10_000.0 // per_trip)

    def test_affordable_trips_limited_by_time(self):
        model = EnergyBudgetModel()
        truck = _make_asset("truck", capacity=4000.0, battery=2e6, interval=1.0)
        # 2 km round trip at 10 m/s = 200 s, plus 15 min service
        trip_h = 2000.0 / 10.0 / 3600.0 + 0.25
        assert model.affordable_trips(truck, 1000.0, wanted=10, time_budget_h=1.0) == int(1.0 // trip_h)

    def test_long_single_trip_still_allowed(self):
        model = EnergyBudgetModel()
        bot = _make_asset("nanobot", capacity=200.0, battery=5e4)
        assert model.affordable_trips(bot, 3000.0, wanted=2, time_budget_h=1.0) == 1

    def test_strict_time_refuses_overrun(self):
        model = EnergyBudgetModel()
        truck = _make_asset("truck", capacity=4000.0, battery=2e6, interval=1.0)
        # one trip takes ~0.306 h
        assert model.affordable_trips(truck, 1000.0, wanted=3, time_budget_h=0.3, strict_time=True) == 0
        assert model.affordable_trips(truck, 1000.0, wanted=3, time_budget_h=0.7, strict_time=True) == 2

    def test_unaffordable(self):
        model = EnergyBudgetModel()
        drone = _make_asset(battery=100.0, battery_max=1.8e6)
        assert model.affordable_trips(drone, 1000.0, wanted=1, time_budget_h=1.0) == 0


class TestRecharge:
    def test_due_at_window(self):
        model = EnergyBudgetModel()
        drone = _make_asset(battery=10.0, battery_max=1.8e6, interval=4.0)
        assert drone.next_recharge_h == 4.0
        assert not model.recharge_due(drone, 3.0)
        assert model.recharge_due(drone, 4.0)

    def test_recharge_restores_and_advances(self):
        model = EnergyBudgetModel()
        drone = _make_asset(battery=10.0, battery_max=1.8e6, interval=4.0)
        model.recharge(drone, 9.0)
        assert drone.battery_j == 1.8e6
        assert drone.next_recharge_h == 12.0

    def test_return_cost_cheaper_than_trip(self):
        model = EnergyBudgetModel()
        drone = _make_asset()
        assert model.return_cost(drone, 1000.0) < model.trip_energy(drone, 1000.0)
