from __future__ import annotations


def test_public_api_exports() -> None:
    import relens as rl

    assert hasattr(rl, "BatchOrchestrator")
    assert hasattr(rl, "JobDescriptor")
    assert hasattr(rl, "reproject")
    assert hasattr(rl, "Rectilinear")
    assert hasattr(rl, "FisheyeEquisolid")
    assert hasattr(rl, "FisheyeEquidistant")
    assert hasattr(rl, "parse_lens_spec")
    assert hasattr(rl, "post_process")
    assert hasattr(rl, "auto_exposure")
