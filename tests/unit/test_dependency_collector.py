from __future__ import annotations

from codestream.dependency_collector import (
    DependencyCollector,
    extract_import_packages,
    package_identity,
    split_package_list,
)
from codestream.events import ProgressReporter
from codestream.record_extractor import Record


def _record(kind: str, payload: str, identity: str | None = None) -> Record:
    return Record(kind=kind, identity=identity, payload=payload, start=0, end=0)


def test_split_package_list_handles_newlines_and_commas() -> None:
    assert split_package_list("axios,\nlodash\n\n, react-icons ") == ["axios", "lodash", "react-icons"]


def test_package_identity_keeps_scope() -> None:
    assert package_identity("@heroicons/react/24/solid") == "@heroicons/react"
    assert package_identity("lodash/debounce") == "lodash"


def test_import_exclusions() -> None:
    content = "\n".join(
        [
            "import React, { useState } from 'react';",
            "import { createRoot } from \"react-dom\";",
            "import Button from './components/Button';",
            "import cfg from '/abs/config';",
            "import { cn } from '@/lib/utils';",
            "import * as Icons from '@heroicons/react/24/outline';",
            "import debounce from 'lodash/debounce';",
            "import 'animate.css';",
        ]
    )

    assert extract_import_packages(content) == ["@heroicons/react", "lodash", "animate.css"]


def test_directive_and_import_of_same_package_record_once(reporter: ProgressReporter) -> None:
    collector = DependencyCollector(reporter)

    collector.collect_from_record(_record("package", "framer-motion"))
    collector.collect_from_record(
        _record("file", "import { motion } from 'framer-motion';", identity="src/components/Card.jsx")
    )

    assert collector.packages == ["framer-motion"]
    events = reporter.of_type("package")
    assert [(e.name, e.message) for e in events] == [("framer-motion", "Package detected: framer-motion")]


def test_packages_record_emits_one_event_per_new_name(reporter: ProgressReporter) -> None:
    collector = DependencyCollector(reporter)

    added = collector.collect_from_record(_record("packages", "axios, lodash\naxios"))

    assert added == ["axios", "lodash"]
    assert [e.name for e in reporter.of_type("package")] == ["axios", "lodash"]


def test_import_source_message(reporter: ProgressReporter) -> None:
    collector = DependencyCollector(reporter)

    collector.collect_from_payload("import axios from 'axios'")

    assert reporter.of_type("package")[0].message == "Package detected from imports: axios"


def test_explanation_records_are_ignored(reporter: ProgressReporter) -> None:
    collector = DependencyCollector(reporter)

    assert collector.collect_from_record(_record("explanation", "import x from 'y'")) == []
    assert collector.packages == []


def test_disabled_collector_records_nothing(reporter: ProgressReporter) -> None:
    collector = DependencyCollector(reporter, enabled=False)

    collector.collect_from_record(_record("package", "axios"))
    collector.collect_from_record(_record("file", "import _ from 'lodash'", identity="a.js"))
    collector.collect_from_payload("import dayjs from 'dayjs'")

    assert collector.packages == []
    assert reporter.of_type("package") == []


def test_host_modules_are_configurable() -> None:
    collector = DependencyCollector(host_modules=("preact",), alias_prefixes=("~/",))

    collector.collect_from_payload("import { h } from 'preact';\nimport x from '~/x';\nimport 'react';")

    assert collector.packages == ["react"]
