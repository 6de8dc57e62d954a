"""
youtrack_worklog_importer.core
- Picks the most recent time report in the reports directory (CSV or .xlsx).
- Extracts the issue key from each row's Description (e.g. "ABC-123 fixed login").
- Validates every row first; any invalid row aborts the run before submitting.
- Creates one YouTrack work item per row, in parallel, via
  POST <base_url>/<issueKey>/timeTracking/workItems.

Carries over from the Jira worklog extractor:
- config.ini with environment variable fallback
- TLS/proxy options, --insecure
- Progress bar (tqdm), bounded parallelism, retry on 429

- Command to generate .exe file:
    pyinstaller --onefile --name mYouTrackWorkLogImporter --hidden-import dateutil.parser mYouTrackWorkLogImporter.py
"""

import argparse
import csv
import configparser
import sys
import os
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time, timedelta
from typing import Dict, Any, Iterator, List, NamedTuple, Tuple, Optional
from concurrent.futures import ThreadPoolExecutor, as_completed
from dateutil import parser as date_parser
import requests
from openpyxl import load_workbook
from tqdm import tqdm
import urllib3

DESCRIPTION_COL = "Description"
START_DATE_COL = "Start date"
DURATION_COL = "Duration"
REQUIRED_COLS = [DESCRIPTION_COL, START_DATE_COL, DURATION_COL]

EXCEL_EXTS = (".xlsx", ".xlsm")
DEFAULT_MAX_WORKERS = 8

ISSUE_KEY_RE = re.compile(r"(\w+-\d+)", re.ASCII)
DURATION_RE = re.compile(r"^\s*(\d+):(\d+):(\d+)\s*$")
# two defaults that differ in year, month and day
_DATE_DEFAULTS = (datetime(2001, 1, 1), datetime(2002, 2, 2))


@dataclass(frozen=True)
class WorkItem:
    issue_key: str
    text: str
    date: int
    duration_seconds: int


class RowError(NamedTuple):
    line: int
    message: str


class SubmitResult(NamedTuple):
    issue_key: str
    ok: bool
    detail: str


def app_dir() -> str:
    """Return the application directory.

    When running as a PyInstaller-frozen executable, this points to the
    directory of the bundled executable. Otherwise it is the current working
    directory, where config.ini and reports/ are expected.
    """
    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        return os.path.dirname(sys.executable)
    return os.getcwd()

def parse_args() -> argparse.Namespace:
    """Parse command-line arguments for the importer.

    Returns:
        argparse.Namespace: Parsed command-line options provided via CLI.
    """
    default_cfg = os.path.join(app_dir(), "config.ini")

    p = argparse.ArgumentParser(description="Importa o relatório de horas mais recente como work items no YouTrack.")
    p.add_argument("--config", default=default_cfg, help=f"Caminho para o config.ini (padrão: {default_cfg})")
    p.add_argument("--reports-dir", default="", help="Pasta dos relatórios; se vazio usa config.ini, YOU_TRACK_REPORTS_DIR ou ./reports")
    p.add_argument("--verbose", action="store_true", help="Logs detalhados")
    p.add_argument("--max-workers", type=int, default=None, help=f"Máximo de threads para envio (default={DEFAULT_MAX_WORKERS})")
    p.add_argument("--timeout", type=int, default=120, help="Timeout por requisição (s) (default=120)")
    p.add_argument("--insecure", action="store_true", help="DESATIVA verificação SSL (NÃO RECOMENDADO)")
    return p.parse_args()

def vprint(verbose: bool, *args, **kwargs):
    """Print arguments only when verbose is True."""
    if verbose:
        print(*args, **kwargs)

def read_config(path: str) -> Dict[str, Any]:
    """Read and validate configuration from an INI file.

    The [youtrack] section is optional: base_url and auth_token fall back to
    the YOU_TRACK_URL and AUTH_TOKEN environment variables. Exits with code 2
    when either is still missing.

    Args:
        path: Path to config.ini.

    Returns:
        Dict[str, Any]: Normalized configuration values required to run.
    """
    cp = configparser.ConfigParser()
    cp.read(path, encoding="utf-8")
    sec = cp["youtrack"] if "youtrack" in cp else {}

    base_url = (sec.get("base_url", "").strip() or os.environ.get("YOU_TRACK_URL", "")).strip().rstrip("/")
    token    = (sec.get("auth_token", "").strip() or os.environ.get("AUTH_TOKEN", "")).strip()
    if not (base_url and token):
        print("ERRO: base_url e auth_token são obrigatórios (config.ini [youtrack] ou YOU_TRACK_URL/AUTH_TOKEN).", file=sys.stderr)
        sys.exit(2)

    verify_ssl = sec.get("verify_ssl", "true").strip().lower() in ("1", "true", "yes", "on")
    reports_dir = sec.get("reports_dir", "").strip() or os.environ.get("YOU_TRACK_REPORTS_DIR", "").strip()

    max_workers_raw = sec.get("max_workers", "").strip()
    try:
        max_workers = int(max_workers_raw) if max_workers_raw else None
    except ValueError:
        print(f"AVISO: max_workers inválido no config.ini ({max_workers_raw!r}). Usando {DEFAULT_MAX_WORKERS}.", file=sys.stderr)
        max_workers = None

    return {
        "base_url": base_url,
        "token": token,
        "verify_ssl": verify_ssl,
        "ca_bundle": sec.get("ca_bundle", "").strip(),
        "http_proxy": sec.get("http_proxy", "").strip(),
        "https_proxy": sec.get("https_proxy", "").strip(),
        "reports_dir": reports_dir,
        "max_workers": max_workers,
    }

def get_latest_file(directory: str) -> Optional[str]:
    """Return the path of the most recently modified file in directory.

    Only immediate regular files are considered; their contents and extensions
    are not inspected. Returns None when the directory is empty or missing.
    """
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return None
    candidates = [os.path.join(directory, n) for n in names]
    candidates = [c for c in candidates if os.path.isfile(c)]
    if not candidates:
        return None
    return max(candidates, key=os.path.getmtime)

def cell_text(value: Any) -> str:
    """Render a spreadsheet cell the way it would appear in a CSV export.

    Durations ([h]:mm:ss cells arrive as timedelta, hh:mm:ss as time) become
    H:MM:SS with hours allowed past 24.
    """
    if value is None:
        return ""
    if isinstance(value, timedelta):
        total = int(round(value.total_seconds()))
        if total < 0:
            return str(value)
        return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"
    if isinstance(value, dt_time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

def _row_dict(header: List[str], values: List[str]) -> Dict[str, str]:
    """Zip header and cells; short rows are padded with ""."""
    return {h: (values[i] if i < len(values) else "") for i, h in enumerate(header)}

def _iter_csv(path: str) -> Iterator[Tuple[int, List[str]]]:
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.reader(f)
        start = 1
        for record in reader:
            # a quoted cell may span lines; the record starts right after the previous one
            line, start = start, reader.line_num + 1
            yield line, record

def _iter_xlsx(path: str) -> Iterator[Tuple[int, List[str]]]:
    wb = load_workbook(path, data_only=True)
    try:
        ws = wb.worksheets[0]
        for line, values in enumerate(ws.iter_rows(values_only=True), start=1):
            yield line, [cell_text(v) for v in values]
    finally:
        wb.close()

def iter_rows(path: str) -> Iterator[Tuple[int, Dict[str, str]]]:
    """Yield (line, {header: cell}) for each data row of a report, in file order.

    The first non-blank record is the header. line is the 1-based physical
    line where the record starts (the sheet row for .xlsx/.xlsm, first sheet).
    Blank lines are skipped. All cells are strings and empty cells are "".
    """
    records = _iter_xlsx(path) if path.lower().endswith(EXCEL_EXTS) else _iter_csv(path)
    header: Optional[List[str]] = None
    for line, values in records:
        if not any(v.strip() for v in values):
            continue
        if header is None:
            header = values
            continue
        yield line, _row_dict(header, values)

def extract_issue_key(description: str) -> Optional[str]:
    """Return the first 'WORD-123' token found anywhere in description, or None."""
    if not description:
        return None
    m = ISSUE_KEY_RE.search(description)
    return m.group(1) if m else None

def parse_date(date_str: str) -> Optional[int]:
    """Parse a human-readable date/time into epoch milliseconds.

    Naive values are taken as local time; values with an offset keep it.
    Year, month and day must all be present: dateutil would otherwise fill
    them from today, so the string is parsed against two different defaults
    and rejected when the dates disagree.
    Returns None for empty strings or when parsing fails.
    """
    if not date_str or not date_str.strip():
        return None
    try:
        dt = date_parser.parse(date_str.strip(), default=_DATE_DEFAULTS[0])
        check = date_parser.parse(date_str.strip(), default=_DATE_DEFAULTS[1])
    except (ValueError, OverflowError):
        return None
    if dt.date() != check.date():
        return None
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return int(round(dt.timestamp() * 1000))

def parse_duration(duration: str) -> Optional[int]:
    """Convert an 'HH:MM:SS' duration into seconds.

    Hours may exceed 24; minutes and seconds must be below 60.
    Returns None when the string does not match that shape.
    """
    if not duration:
        return None
    m = DURATION_RE.match(duration)
    if not m:
        return None
    hours, minutes, seconds = (int(g) for g in m.groups())
    if minutes >= 60 or seconds >= 60:
        return None
    return hours * 3600 + minutes * 60 + seconds

def build_work_item(row: Dict[str, Any]) -> Tuple[Optional[WorkItem], List[str]]:
    """Map one report row to a WorkItem.

    Returns:
        tuple[Optional[WorkItem], list[str]]: the item, or None plus the list
        of problems found in the row.
    """
    problems: List[str] = []
    missing = [c for c in REQUIRED_COLS if c not in row]
    if missing:
        return None, [f'coluna ausente: "{c}"' for c in missing]

    description = row[DESCRIPTION_COL] or ""
    issue_key = extract_issue_key(description)
    if not issue_key:
        problems.append(f'Não foi possível extrair a chave da issue. Verifique a descrição: "{description}"')

    started = parse_date(row[START_DATE_COL] or "")
    if started is None:
        problems.append(f'Data inválida em "{START_DATE_COL}": "{row[START_DATE_COL]}"')

    seconds = parse_duration(row[DURATION_COL] or "")
    if seconds is None:
        problems.append(f'Duração inválida em "{DURATION_COL}" (esperado HH:MM:SS): "{row[DURATION_COL]}"')

    if problems:
        return None, problems
    return WorkItem(issue_key=issue_key, text=description, date=started, duration_seconds=seconds), []

def load_work_items(path: str) -> Tuple[List[WorkItem], List[RowError]]:
    """Read every row of the report and validate it.

    Each RowError carries the physical line where the offending row starts.
    """
    items: List[WorkItem] = []
    errors: List[RowError] = []
    for line, row in iter_rows(path):
        item, problems = build_work_item(row)
        if item is None:
            errors.extend(RowError(line, msg) for msg in problems)
        else:
            items.append(item)
    return items, errors

def make_session(token: str, verify: Optional[bool]=True, ca_bundle: Optional[str]="",
                 http_proxy: str="", https_proxy: str="") -> requests.Session:
    """Create a configured requests.Session for YouTrack API access.

    Applies the bearer token, JSON headers, optional proxies,
    and SSL verification or custom CA bundle.

    Args:
        token: YouTrack permanent token.
        verify: Whether to verify SSL certs (ignored if ca_bundle provided).
        ca_bundle: Path to CA bundle to use for SSL verification.
        http_proxy: HTTP proxy URL.
        https_proxy: HTTPS proxy URL.

    Returns:
        requests.Session: Configured session instance.
    """
    s = requests.Session()
    s.headers.update({
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
    })
    if http_proxy or https_proxy:
        proxies = {}
        if http_proxy:
            proxies["http"] = http_proxy
        if https_proxy:
            proxies["https"] = https_proxy
        s.proxies.update(proxies)
    if ca_bundle:
        s.verify = ca_bundle
    else:
        s.verify = verify
    return s

def work_item_url(base_url: str, issue_key: str) -> str:
    return f"{base_url.rstrip('/')}/{issue_key}/timeTracking/workItems"

def build_payload(item: WorkItem) -> Dict[str, Any]:
    return {
        "usesMarkdown": True,
        "text": item.text,
        "date": item.date,
        "duration": {"seconds": item.duration_seconds},
    }

def http_post_with_retry(session: requests.Session, url: str, json: Dict[str, Any],
                         timeout: int = 120, max_tries: int = 3, backoff_base: float = 0.5) -> requests.Response:
    """HTTP POST that retries only on 429, honoring Retry-After. Returns the final response.

    Other error statuses are returned immediately: the work item may already
    exist, and posting again would duplicate it.
    """
    tries = 0
    while True:
        tries += 1
        r = session.post(url, json=json, timeout=timeout)
        if r.status_code != 429 or tries >= max_tries:
            return r
        retry_after = r.headers.get("Retry-After")
        try:
            wait = float(retry_after) if retry_after else backoff_base * (2 ** (tries - 1))
        except ValueError:
            wait = backoff_base * (2 ** (tries - 1))
        time.sleep(max(0.0, wait))

def response_detail(r: requests.Response) -> str:
    """Best-effort readable body of a response: JSON when available, else text."""
    try:
        data = r.json()
    except ValueError:
        data = None
    if data is not None:
        return str(data)
    return getattr(r, "text", "") or f"HTTP {r.status_code}"

def create_work_item(session: requests.Session, base_url: str, item: WorkItem, timeout: int) -> Tuple[bool, str]:
    """POST a single work item.

    Never raises for HTTP or network failures.

    Returns:
        tuple[bool, str]: (created, response body or error message).
    """
    url = work_item_url(base_url, item.issue_key)
    try:
        r = http_post_with_retry(session, url, json=build_payload(item), timeout=timeout)
    except requests.exceptions.SSLError as e:
        return False, f"erro SSL: {e}"
    except requests.exceptions.RequestException as e:
        return False, str(e)
    return r.status_code < 400, response_detail(r)

def submit_work_item(base_url: str, session_factory, item: WorkItem, timeout: int) -> Tuple[bool, str]:
    """Thread worker: create a session and submit one work item."""
    return create_work_item(session_factory(), base_url, item, timeout)

def create_work_items(items: List[WorkItem], base_url: str, session_factory,
                      max_workers: int = DEFAULT_MAX_WORKERS, timeout: int = 120) -> List[SubmitResult]:
    """Submit all work items in parallel and wait until every request settles.

    Each outcome is logged independently; a failed item never stops the others.

    Args:
        items: Work items to create.
        base_url: YouTrack issues API base URL.
        session_factory: Callable that returns a configured requests.Session.
        max_workers: Thread pool size.
        timeout: Per-request timeout seconds.

    Returns:
        List[SubmitResult]: One result per item, in completion order.
    """
    results: List[SubmitResult] = []
    if not items:
        return results
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(submit_work_item, base_url, session_factory, item, timeout): item
            for item in items
        }
        with tqdm(total=len(futures), desc="Enviando work items", unit="item") as pbar:
            for fut in as_completed(futures):
                item = futures[fut]
                try:
                    ok, detail = fut.result()
                except Exception as e:
                    ok, detail = False, str(e)
                if ok:
                    tqdm.write(f"Work item criado para {item.issue_key}: {detail}")
                else:
                    tqdm.write(f"ERRO: falha ao criar work item para {item.issue_key}: {detail}", file=sys.stderr)
                results.append(SubmitResult(item.issue_key, ok, detail))
                pbar.update(1)
    return results

def main():
    """Program entry point: select report, validate rows, submit work items."""
    args = parse_args()
    cfg = read_config(args.config)
    base_url = cfg["base_url"]
    token    = cfg["token"]
    verify_ssl_cfg = bool(cfg.get("verify_ssl", True))
    ca_bundle = cfg.get("ca_bundle", "")
    http_proxy = cfg.get("http_proxy", "")
    https_proxy = cfg.get("https_proxy", "")

    print(f"Usando URL do YouTrack: {base_url}")

    if args.insecure:
        verify_val = False
    else:
        verify_val = verify_ssl_cfg

    if not verify_val and not ca_bundle:
        sys.stderr.write("WARNING: SSL certificate verification is DISABLED. Use only for testing.\n")
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    verbose = args.verbose
    timeout = args.timeout
    if args.max_workers is not None:
        max_workers = max(1, args.max_workers)
    else:
        cfg_workers = cfg.get("max_workers")
        max_workers = max(1, cfg_workers if cfg_workers is not None else DEFAULT_MAX_WORKERS)

    reports_dir = args.reports_dir.strip() or cfg.get("reports_dir") or os.path.join(app_dir(), "reports")
    vprint(verbose, f"Pasta de relatórios: {reports_dir}")

    latest_file = get_latest_file(reports_dir)
    if not latest_file:
        print("ERRO: nenhum arquivo de relatório encontrado na pasta.", file=sys.stderr)
        sys.exit(1)

    print(f"Usando arquivo: {latest_file}")

    items, errors = load_work_items(latest_file)
    if errors:
        print(f"ERRO: {len(errors)} problema(s) no relatório; nenhum work item foi enviado.", file=sys.stderr)
        for err in errors:
            print(f"  linha {err.line}: {err.message}", file=sys.stderr)
        sys.exit(3)

    vprint(verbose, f"Total de work items para enviar: {len(items)}")

    def session_factory():
        """Factory to create a configured requests.Session for concurrent calls."""
        return make_session(token, verify=verify_val, ca_bundle=ca_bundle,
                            http_proxy=http_proxy, https_proxy=https_proxy)

    results = create_work_items(items, base_url, session_factory, max_workers=max_workers, timeout=timeout)

    created = sum(1 for r in results if r.ok)
    print(f"Concluído. Work items criados: {created}, falhas: {len(results) - created}")

if __name__ == "__main__":
    main()
