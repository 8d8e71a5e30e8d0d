import logging

from protonverbs.framework.log_scan import ScanningLogSink, classify_line


def test_classify_line_matches_known_signatures_case_insensitively():
    matches = classify_line("0024:ERR:MODULE:import_dll Library MSVCP140.dll not found")

    assert [m.code for m in matches] == ["IMPORT_DLL"]
    assert classify_line("fixme:d3d:wined3d_guess_card unknown card") == []


def test_sink_warns_once_per_code_and_keeps_all_matches(caplog):
    logger = logging.getLogger("test.log_scan")

    with caplog.at_level(logging.DEBUG, logger="test.log_scan"):
        sink = ScanningLogSink(logger, label="setup.exe")
        sink.submit("wine: Unhandled page fault on read access")
        sink.submit("wine: Unhandled page fault on write access")
        sink.submit("plain output")
        sink.close()

    assert [m.code for m in sink.matches] == ["PAGE_FAULT", "PAGE_FAULT"]
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "PAGE_FAULT" in warnings[0].getMessage()
    assert "[setup.exe] plain output" in caplog.text
