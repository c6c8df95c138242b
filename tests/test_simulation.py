"""End-to-end policy run over the on-disk reference catchment."""

from datetime import date

import pytest

from catchment_policy.exceptions import ConfigurationError
from catchment_policy.settings import load_scenario
from catchment_policy.simulation.simulation import load_forcing, run_simulation


@pytest.fixture
def results(scenario_file, forcing_frame, reference_data_dir):
    scenario = load_scenario(scenario_file)
    return run_simulation(scenario, forcing=forcing_frame, project_root=reference_data_dir)


class TestRunSimulation:

    def test_one_record_per_day(self, results):
        assert len(results.daily_records) == 381
        assert results.daily_records[0]["date"] == date(2010, 6, 25)
        assert results.daily_records[-1]["date"] == date(2011, 7, 10)

    def test_policy_ticks(self, results):
        tick_log = results.policy_state.tick_log
        assert tick_log[0]["date"] == date(2010, 7, 1)
        assert all(row["release_ml_per_day"] >= 0.0 for row in tick_log)
        ran = [r for r in results.daily_records if r["policy_ran"]]
        assert len(ran) == len(tick_log)

    def test_dam_extraction_reduces_volume(self, results):
        by_date = {r["date"]: r for r in results.daily_records}
        assert by_date[date(2010, 7, 8)]["dam_extraction_ml"] == 25.5
        assert by_date[date(2010, 7, 8)]["dam_volume_ml"] == pytest.approx(180000.0 - 25.5)
        assert by_date[date(2010, 7, 9)]["dam_volume_ml"] == 180000.0

    def test_groundwater_annual_clock(self, results):
        annual_log = results.policy_state.gw_state.annual_log
        # season start 2010, season end 2011, season start 2011
        assert [row["year"] for row in annual_log] == [1, 1, 2]
        assert annual_log[0]["initial_level_B1"] == 12.0

    def test_orders_capped_by_allocation(self, results):
        # nothing is allocated before the first tick
        first = results.daily_records[0]
        assert first["sw_orders_ml"] == 0.0
        assert first["gw_orders_ml"] == 0.0
        assert all(r["sw_orders_ml"] <= 65.0 for r in results.daily_records)

    def test_farm_allocation_records(self, results):
        zone_ids = {r["zone_id"] for r in results.farm_allocation_records}
        assert zone_ids == {"100", "110", "120"}
        assert all(r["gw_hr_ml"] == 0.0 for r in results.farm_allocation_records if r["zone_id"] == "120")

    def test_recreational_index_recorded(self, results):
        # 62 m of 204 m is above the 30% threshold
        assert all(r["recreational_index"] == 1.0 for r in results.daily_records)


class TestForcing:

    def test_missing_columns(self, scenario_file, forcing_frame, reference_data_dir):
        scenario = load_scenario(scenario_file)
        with pytest.raises(ConfigurationError, match="proj_inflow"):
            run_simulation(scenario, forcing=forcing_frame.drop(columns=["proj_inflow"]),
                           project_root=reference_data_dir)

    def test_no_forcing_named(self, scenario_file, reference_data_dir):
        with pytest.raises(ConfigurationError, match="forcing"):
            run_simulation(load_scenario(scenario_file), project_root=reference_data_dir)

    def test_load_forcing_csv(self, tmp_path, forcing_frame):
        path = tmp_path / "forcing.csv"
        with open(path, "w") as f:
            f.write("# synthetic forcing\n")
        forcing_frame.rename_axis("date").to_csv(path, mode="a")

        df = load_forcing(path)
        assert len(df) == len(forcing_frame)
        assert df.loc["2010-07-01", "bore_B1"] == 12.0

    def test_load_forcing_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_forcing(tmp_path / "absent.csv")
