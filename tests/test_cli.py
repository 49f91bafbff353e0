"""CLI tests"""

import json

import pytest
from click.testing import CliRunner

from rbi_access.cli import cli


def _json(result):
    return json.loads(result.stdout[result.stdout.index("{"):])


@pytest.fixture
def runner():
    return CliRunner()


def test_geography_load(runner, tmp_path):
    (tmp_path / "regions.csv").write_text("code,name\n13,National Capital Region\n")
    (tmp_path / "provinces.csv").write_text("code,name,region_code\n")
    (tmp_path / "cities_municipalities.csv").write_text(
        "code,name,province_code,region_code,type,is_independent\n1339000,City of Manila,,13,city,true\n"
    )
    (tmp_path / "barangays.csv").write_text(
        "code,name,city_municipality_code\n133900001,Barangay 1,1339000\n13390000X,Typo,1339000\n"
    )

    result = runner.invoke(cli, ["geography", "load", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "barangays: 1" in result.stdout
    assert "Rejected rows: 1" in result.stdout

    check = runner.invoke(cli, ["geography", "check", "--code", "133900001"])
    assert check.exit_code == 0
    assert _json(check)["chain"]["city_code"] == "1339000"


def test_geography_check_unknown_code(runner, geography):
    result = runner.invoke(cli, ["geography", "check", "-c", "999"])
    assert result.exit_code == 1
    assert _json(result)["status"] == "violations"


def test_drift_scan(runner, geography, seed_household, inject_drift):
    ids = seed_household("HH-1", "042114014", residents=2)

    clean = runner.invoke(cli, ["diagnostics", "drift"])
    assert clean.exit_code == 0
    assert _json(clean)["households_checked"] == 1

    inject_drift(ids[1], region_code="13")
    drifted = runner.invoke(cli, ["diagnostics", "drift", "--household", "HH-1"])
    assert drifted.exit_code == 1
    assert _json(drifted)["findings"][0]["resident_id"] == ids[1]


def test_parity(runner, geography, seed_household):
    ids = seed_household("HH-1", "042114014", residents=2)

    result = runner.invoke(
        cli, ["diagnostics", "parity", "--identity", "city-1", "--role", "city_admin", "--code", "0421140", *ids]
    )

    assert result.exit_code == 0, result.output
    report = _json(result)
    assert report["checked"] == 2
    assert report["findings"] == []


def test_parity_unresolved_principal(runner, geography, seed_household):
    ids = seed_household("HH-1", "042114014", residents=1)

    result = runner.invoke(cli, ["diagnostics", "parity", "--identity", "x", "--role", "resident", *ids])

    assert result.exit_code == 0
    assert "Principal unresolved" in result.stdout
    assert _json(result)["findings"] == []


def test_rls_render(runner):
    result = runner.invoke(cli, ["rls", "render"])
    assert result.exit_code == 0
    assert "CREATE OR REPLACE FUNCTION rbi_scope_allows" in result.stdout
    assert "ALTER TABLE households ENABLE ROW LEVEL SECURITY;" in result.stdout
