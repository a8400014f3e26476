"""
Engine tests driven by a fake transport with canned hyprctl replies.
Covers:
- parse_event: '>>' and '>' framing, payloads containing delimiters, garbage lines.
- initial snapshot: output filtering, special filtering, window maps, persistent workspaces.
- every subscribed event kind and its registry transition.
- doubled-special guard for create/destroy.
- reconciliation: active/visible/urgent flags, labels, ordering, query failure.
- clicks translated into dispatch commands; close() unregistering from the transport.
"""

import copy
import unittest
from unittest.mock import MagicMock, patch

from hypr_workspaces import metrics
from hypr_workspaces.config import WorkspacesConfig
from hypr_workspaces.engine import EVENT_KINDS, WorkspacesEngine, is_double_special, parse_event
from hypr_workspaces.ipc import HyprlandIPC
from hypr_workspaces.model import Workspace
from hypr_workspaces.sorting import SortMethod


class FakeIPC(HyprlandIPC):
    def __init__(self, replies):
        super().__init__()
        self.replies = replies
        self.queries = []
        self.dispatched = []
        self.dispatch_ok = True

    def query(self, command):
        self.queries.append(command)
        return copy.deepcopy(self.replies.get(command))

    def dispatch(self, command):
        self.dispatched.append(command)
        return self.dispatch_ok


def default_replies():
    return {
        "activeworkspace": {"id": 1, "name": "1"},
        "monitors": [
            {"id": 0, "name": "DP-1", "focused": True, "activeWorkspace": {"id": 1, "name": "1"}},
            {"id": 1, "name": "HDMI-A-1", "activeWorkspace": {"id": 3, "name": "3"}},
        ],
        "workspaces": [
            {"id": 1, "name": "1", "monitor": "DP-1", "windows": 1},
            {"id": 2, "name": "2", "monitor": "DP-1", "windows": 0},
            {"id": 3, "name": "3", "monitor": "HDMI-A-1", "windows": 0},
            {"id": -98, "name": "special:scratch", "monitor": "DP-1", "windows": 0},
        ],
        "clients": [
            {"address": "0xAA", "class": "firefox", "workspace": {"id": 1, "name": "1"}},
            {"address": "0xCC", "class": "kitty", "workspace": {"id": 3, "name": "3"}},
        ],
    }


class EngineTestCase(unittest.TestCase):
    def setUp(self):
        metrics.configure(True, 1000)
        self.replies = default_replies()
        self.ipc = FakeIPC(self.replies)
        self.sink = MagicMock()

    def tearDown(self):
        metrics.configure(False, 1000)

    def make_engine(self, **cfg_kw):
        cfg_kw.setdefault("format", "{name}:{windows}")
        cfg_kw.setdefault("window_rewrite", {"firefox": "F", "kitty": "K"})
        cfg = WorkspacesConfig(**cfg_kw)
        engine = WorkspacesEngine(self.ipc, cfg, "DP-1", self.sink)
        engine.start()
        return engine

    def ws(self, engine, name):
        found = engine.registry.find_by_name(name)
        self.assertIsNotNone(found, f"workspace {name} missing")
        return found


class TestParseEvent(unittest.TestCase):
    def test_framing(self):
        self.assertEqual(parse_event("workspace>>2"), ("workspace", "2"))
        self.assertEqual(parse_event(b"workspace>>2\n"), ("workspace", "2"))
        self.assertEqual(
            parse_event("openwindow>0xAA,ws1,firefox,Title"),
            ("openwindow", "0xAA,ws1,firefox,Title"),
        )
        self.assertEqual(
            parse_event("openwindow>>AA,1,kitty,a > b, c"), ("openwindow", "AA,1,kitty,a > b, c")
        )
        self.assertEqual(parse_event("garbage"), (None, ""))
        self.assertEqual(parse_event(""), (None, ""))
        self.assertEqual(parse_event(">>x"), (None, ""))

    def test_double_special(self):
        self.assertTrue(is_double_special("special:special:scratch"))
        self.assertFalse(is_double_special("special:scratch"))


class TestInit(EngineTestCase):
    def test_snapshot_for_output(self):
        engine = self.make_engine()
        self.assertEqual(engine.registry.names(), ["1", "2"])
        self.assertEqual(engine.active_workspace_name, "1")
        self.assertEqual(engine.monitor_id, 0)

        ws1 = self.ws(engine, "1")
        self.assertEqual(ws1.windows.items(), [("AA", "F")])
        self.assertTrue(ws1.active)
        self.assertTrue(ws1.visible)
        self.assertEqual(ws1.window_count, 1)
        self.assertEqual(ws1.label, "1:F")
        self.assertFalse(self.ws(engine, "2").visible)

        self.sink.render.assert_called_once()
        views = self.sink.render.call_args[0][0]
        self.assertEqual([v.name for v in views], ["1", "2"])
        self.assertEqual(views[0].command, "dispatch workspace 1")
        for kind in EVENT_KINDS:
            self.assertTrue(self.ipc.subscribed(kind))

    def test_all_outputs_and_special(self):
        engine = self.make_engine(all_outputs=True, show_special=True)
        self.assertEqual(engine.registry.names(), ["1", "2", "3", "scratch"])
        self.assertEqual(self.ws(engine, "3").windows.items(), [("CC", "K")])

    def test_persistent_workspaces(self):
        engine = self.make_engine(persistent_workspaces={"DP-1": [2, 5], "mail": ["DP-1"]})
        self.assertEqual(engine.persistent_names, ["2", "5", "mail"])
        self.assertEqual(engine.registry.names(), ["1", "2", "5", "mail"])
        # "2" existed both as declared and live: one entry, still persistent
        self.assertTrue(self.ws(engine, "2").persistent)
        self.assertEqual(self.ws(engine, "mail").id, 0)

    def test_unknown_monitor_uses_id_zero(self):
        self.replies["monitors"] = []
        with patch("hypr_workspaces.engine.log") as mock_log:
            engine = self.make_engine(persistent_workspaces={"*": 2})
            self.assertTrue(mock_log.error.called)
        self.assertEqual(engine.monitor_id, 0)
        self.assertEqual(engine.persistent_names, ["1", "2"])

    def test_icons_in_labels(self):
        engine = self.make_engine(
            format="{icon}", format_icons={"active": "*", "empty": "o", "default": "x"}
        )
        self.assertEqual([w.label for w in engine.registry], ["*", "o"])


class TestWorkspaceEvents(EngineTestCase):
    def test_workspace_and_focusedmon_set_active(self):
        engine = self.make_engine()
        engine.on_event("workspace>>2")
        self.assertTrue(self.ws(engine, "2").active)
        self.assertFalse(self.ws(engine, "1").active)

        engine.on_event("focusedmon>>HDMI-A-1,3")
        self.assertEqual(engine.active_workspace_name, "3")
        self.assertFalse(any(w.active for w in engine.registry))

    def test_create_and_destroy(self):
        engine = self.make_engine()
        self.replies["workspaces"].append({"id": 4, "name": "4", "monitor": "DP-1", "windows": 0})
        self.replies["workspaces"].append({"id": 5, "name": "5", "monitor": "HDMI-A-1"})

        engine.on_event("createworkspace>>4")
        engine.on_event("createworkspace>>5")
        engine.on_event("createworkspace>>special:scratch")
        self.assertEqual(engine.registry.names(), ["1", "2", "4"])

        engine.on_event("destroyworkspace>>2")
        engine.on_event("destroyworkspace>>99")
        self.assertEqual(engine.registry.names(), ["1", "4"])

    def test_special_create_when_shown(self):
        engine = self.make_engine(show_special=True)
        engine.on_event("destroyworkspace>>special:scratch")
        self.assertEqual(engine.registry.names(), ["1", "2"])
        engine.on_event("createworkspace>>special:scratch")
        self.assertEqual(engine.registry.names(), ["1", "2", "scratch"])
        self.assertTrue(self.ws(engine, "scratch").special)

    def test_double_special_events_ignored(self):
        self.replies["workspaces"].append(
            {"id": -97, "name": "special:special:x", "monitor": "DP-1", "windows": 0}
        )
        engine = self.make_engine(show_special=True)
        before = len(engine.registry)
        for _ in range(3):
            engine.on_event("createworkspace>>special:special:x")
            engine.on_event("destroyworkspace>>special:special:x")
            engine.on_event("createworkspace>>special:special:scratch")
            engine.on_event("destroyworkspace>>special:special:scratch")
        self.assertEqual(len(engine.registry), before)

    def test_persistent_survives_destroy_and_replacement(self):
        engine = self.make_engine(persistent_workspaces={"DP-1": [7]})
        self.assertTrue(self.ws(engine, "7").persistent)

        engine.on_event("destroyworkspace>>7")
        self.assertIn("7", engine.registry.names())

        self.replies["workspaces"].append({"id": 7, "name": "7", "monitor": "DP-1", "windows": 2})
        engine.on_event("createworkspace>>7")
        self.assertEqual(engine.registry.names().count("7"), 1)
        ws7 = self.ws(engine, "7")
        self.assertTrue(ws7.persistent)
        self.assertEqual(ws7.window_count, 2)

    def test_move_workspace(self):
        engine = self.make_engine()
        engine.on_event("moveworkspace>>2,HDMI-A-1")
        self.assertEqual(engine.registry.names(), ["1"])

        self.replies["workspaces"][2]["monitor"] = "DP-1"
        engine.on_event("moveworkspace>>3,DP-1")
        self.assertEqual(engine.registry.names(), ["1", "3"])

    def test_move_workspace_ignored_for_all_outputs(self):
        engine = self.make_engine(all_outputs=True)
        engine.on_event("moveworkspace>>2,HDMI-A-1")
        self.assertEqual(engine.registry.names(), ["1", "2", "3"])

    def test_rename_active_updates_pointer(self):
        engine = self.make_engine()
        engine.on_event("renameworkspace>>1,web")
        self.assertEqual(engine.active_workspace_name, "web")
        self.assertTrue(self.ws(engine, "web").active)

    def test_rename_inactive_keeps_pointer(self):
        engine = self.make_engine()
        engine.on_event("renameworkspace>>2,mail")
        self.assertEqual(engine.active_workspace_name, "1")
        self.assertEqual(self.ws(engine, "mail").id, 2)

    def test_rename_unknown_or_invalid_id(self):
        engine = self.make_engine()
        engine.on_event("renameworkspace>>42,x")
        engine.on_event("renameworkspace>>abc,x")
        self.assertEqual(engine.registry.names(), ["1", "2"])
        self.assertEqual(engine.active_workspace_name, "1")


class TestWindowEvents(EngineTestCase):
    def test_openwindow_scenario(self):
        self.replies["workspaces"] = [{"id": 5, "name": "ws1", "monitor": "DP-1", "windows": 0}]
        self.replies["clients"] = []
        engine = self.make_engine()
        self.assertEqual(self.ws(engine, "ws1").windows.items(), [])

        engine.on_event("openwindow>0xAA,ws1,firefox,Title")
        self.assertEqual(
            self.ws(engine, "ws1").windows.items(), [("AA", engine.rewrite.get("firefox"))]
        )

    def test_openwindow_counts_and_unknown_class(self):
        engine = self.make_engine()
        self.replies["workspaces"][1]["windows"] = 1
        engine.on_event("openwindow>>BB,2,steam,Store, library")
        ws2 = self.ws(engine, "2")
        self.assertEqual(ws2.windows.items(), [("BB", "?")])
        self.assertEqual(ws2.window_count, 1)
        self.assertEqual(ws2.label, "2:?")

        engine.on_event("openwindow>>broken")
        self.assertEqual(ws2.windows.items(), [("BB", "?")])

    def test_closewindow(self):
        engine = self.make_engine()
        self.replies["workspaces"][0]["windows"] = 0
        engine.on_event("closewindow>>AA")
        ws1 = self.ws(engine, "1")
        self.assertEqual(ws1.windows.items(), [])
        self.assertTrue(ws1.empty)
        engine.on_event("closewindow>>AA")  # already gone

    def test_movewindow_keeps_single_copy(self):
        engine = self.make_engine()
        repr_before = dict(self.ws(engine, "1").windows.items())["AA"]
        engine.on_event("movewindow>>AA,2")

        holders = [w.name for w in engine.registry if "AA" in w.windows]
        self.assertEqual(holders, ["2"])
        self.assertEqual(dict(self.ws(engine, "2").windows.items())["AA"], repr_before)

    def test_movewindow_to_other_output_drops_it(self):
        engine = self.make_engine()
        engine.on_event("movewindow>>AA,3")
        self.assertFalse(any("AA" in w.windows for w in engine.registry))

    def test_urgent_then_activate(self):
        self.replies["clients"].append(
            {"address": "0xBB", "class": "kitty", "workspace": {"id": 2, "name": "2"}}
        )
        engine = self.make_engine(format="{icon}", format_icons={"urgent": "!", "default": "-"})
        engine.on_event("urgent>>BB")
        ws2 = self.ws(engine, "2")
        self.assertTrue(ws2.urgent)
        self.assertEqual(ws2.label, "!")

        engine.on_event("workspace>>2")
        self.assertFalse(ws2.urgent)
        self.assertTrue(ws2.active)

    def test_urgent_unknown_window(self):
        engine = self.make_engine()
        engine.on_event("urgent>>DEAD")
        self.assertFalse(any(w.urgent for w in engine.registry))


class TestReconciliation(EngineTestCase):
    def test_single_active_and_sorted(self):
        engine = self.make_engine(sort_by=SortMethod.DEFAULT)
        self.replies["workspaces"].append({"id": 10, "name": "10", "monitor": "DP-1"})
        self.replies["workspaces"].append({"id": -1337, "name": "name:mail", "monitor": "DP-1"})
        engine.on_event("createworkspace>>name:mail")
        engine.on_event("createworkspace>>10")
        engine.on_event("workspace>>10")

        self.assertEqual(engine.registry.names(), ["1", "2", "10", "mail"])
        self.assertEqual([w.name for w in engine.registry if w.active], ["10"])
        views = self.sink.render.call_args[0][0]
        self.assertEqual([v.name for v in views], ["1", "2", "10", "mail"])

    def test_query_failure_leaves_visibility(self):
        engine = self.make_engine()
        self.assertTrue(self.ws(engine, "1").visible)
        self.replies["monitors"] = None
        engine.on_event("workspace>>2")
        self.assertTrue(self.ws(engine, "1").visible)
        self.assertTrue(self.ws(engine, "2").active)

    def test_window_count_query_failure(self):
        engine = self.make_engine()
        self.replies["workspaces"] = None
        engine.on_event("closewindow>>AA")
        self.assertEqual(self.ws(engine, "1").window_count, 1)
        self.assertEqual(self.ws(engine, "1").windows.items(), [])

    def test_malformed_query_records_skipped(self):
        engine = self.make_engine()
        self.replies["workspaces"] = [
            "garbage",
            None,
            {"id": 4, "name": "4", "monitor": "DP-1", "windows": 2},
            {"id": 1, "name": "1", "monitor": "DP-1", "windows": 3},
        ]
        self.replies["clients"] = [7, {"address": "0xAA", "workspace": {"id": 1}}]
        engine.on_event("createworkspace>>9")
        engine.on_event("moveworkspace>>4,DP-1")
        engine.on_event("openwindow>>DD,4,kitty,shell")
        engine.on_event("urgent>>AA")
        self.assertEqual(engine.registry.names(), ["1", "2", "4"])
        self.assertEqual(self.ws(engine, "1").window_count, 3)
        self.assertEqual(self.ws(engine, "2").window_count, 0)
        self.assertEqual(self.ws(engine, "4").window_count, 2)
        self.assertEqual(self.ws(engine, "4").windows.items(), [("DD", "K")])

    def test_broken_format_does_not_break_init(self):
        with patch("hypr_workspaces.model.log"):
            engine = self.make_engine(format="{id[0]}")
        self.assertEqual([v.label for v in engine.views()], ["1", "2"])

    def test_unsupported_event(self):
        engine = self.make_engine()
        self.sink.reset_mock()
        self.assertIsNone(engine.on_event("activewindow>>kitty,term"))
        self.assertIsNone(engine.on_event("garbage"))
        self.sink.render.assert_not_called()
        self.assertEqual(metrics.get("unsupported_events"), 2)

    def test_transport_routes_subscribed_events(self):
        engine = self.make_engine()
        self.assertTrue(self.ipc.emit("workspace>>2"))
        self.assertFalse(self.ipc.emit("windowtitle>>AA"))
        self.assertTrue(self.ws(engine, "2").active)
        self.assertEqual(metrics.get("events_processed"), 1)


class TestClickAndClose(EngineTestCase):
    def test_click_dispatches(self):
        engine = self.make_engine()
        view = engine.views()[1]
        self.assertTrue(engine.click(view))
        self.assertTrue(engine.click(Workspace({"id": -1337, "name": "name:mail"}, str)))
        self.assertTrue(engine.click(Workspace({"id": -98, "name": "special:scratch"}, str)))
        self.assertTrue(engine.click(Workspace({"id": -99, "name": "special"}, str)))
        self.assertEqual(
            self.ipc.dispatched,
            [
                "dispatch workspace 2",
                "dispatch workspace name:mail",
                "dispatch togglespecialworkspace scratch",
                "dispatch togglespecialworkspace",
            ],
        )

    def test_click_failure(self):
        engine = self.make_engine()
        self.ipc.dispatch_ok = False
        with patch("hypr_workspaces.engine.log") as mock_log:
            self.assertFalse(engine.click(engine.views()[0]))
            self.assertTrue(mock_log.error.called)

    def test_close_unregisters(self):
        engine = self.make_engine()
        engine.close()
        self.assertEqual(len(engine.registry), 0)
        for kind in EVENT_KINDS:
            self.assertFalse(self.ipc.subscribed(kind))
        self.assertFalse(self.ipc.emit("workspace>>2"))


if __name__ == "__main__":
    unittest.main()
