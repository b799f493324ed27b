import json

import exports
from models.results import BeaconValidity
from conftest import make_challenge, make_witness


def test_challenges_round_trip_through_file(tmp_path):
    filename = str(tmp_path / "challenges.json")
    challenges = [make_challenge(100, witnesses=[make_witness("B", 100)]), make_challenge(200)]

    exports.write_json(challenges, filename)

    assert exports.load_challenges(filename) == challenges


def test_hotspots_round_trip_through_file(tmp_path, hotspots):
    filename = str(tmp_path / "hotspots.json")

    exports.write_json(hotspots, filename)

    assert exports.load_hotspots(filename) == hotspots


def test_write_to_stdout(capsys):
    exports.write_json({"totals": [BeaconValidity(timestamp=1, hash="h", valid=2, invalid=0)]})

    data = json.loads(capsys.readouterr().out)
    assert data == {"totals": [{"timestamp": 1, "hash": "h", "valid": 2, "invalid": 0}]}
