"""テスト用 HTML 生成ヘルパ.

TOP500 のページ構造（html → body → div[2] → div[1] → div[1] → table）を再現する。
"""

from __future__ import annotations

from top500.cache import FetchCache


def site_id_for(rank: int) -> int:
    """順位 → サイト ID（50 サイトを使い回す）."""
    return 1000 + rank % 50


def item_id_for(rank: int) -> int:
    return 100000 + rank


def wrap_page(content: str, title: str = "TOP500") -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{title}</title>
</head>
<body>
  <div class="navbar"><a href="/">TOP500</a></div>
  <div class="container">
    <div class="row">
      <div class="col-sm-12">
{content}
      </div>
    </div>
  </div>
  <footer>footer</footer>
</body>
</html>
"""


def list_row(rank: int, site_id: int | None = None, item_id: int | None = None) -> str:
    site_id = site_id_for(rank) if site_id is None else site_id
    item_id = item_id_for(rank) if item_id is None else item_id
    return (
        "<tr>"
        f'<td><span class="badge">{rank}</span></td>'
        f'<td><a href="https://www.top500.org/site/{site_id}">Site {site_id}</a></td>'
        f'<td><a href="https://www.top500.org/system/{item_id}"><b>System {item_id}</b> - Cluster</a></td>'
        "<td>1,234</td>"
        "</tr>"
    )


def list_page(ranks: list[int], extra_rows: str = "") -> str:
    rows = "\n".join(list_row(r) for r in ranks)
    table = f"""
<table class="table table-condensed">
  <thead>
    <tr><th>Rank</th><th>Site</th><th>System</th><th>Cores</th></tr>
  </thead>
  <tbody>
{rows}
{extra_rows}
  </tbody>
</table>
"""
    return wrap_page(table, title="TOP500 List")


def write_list_pages(cache: FetchCache, list_id: int, size: int = 500, pages: int = 5) -> None:
    """キャッシュにリストの全ページを書き込む."""
    rows = size // pages
    for page in range(1, pages + 1):
        first = (page - 1) * rows + 1
        path = cache.list_page_path(list_id, page)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(list_page(list(range(first, first + rows))), encoding="utf-8")


def site_page(site_id: int, name: str | None = None) -> str:
    name = name or f"Site {site_id}"
    content = f"""
<h1>Sites</h1>
<h1>{name}</h1>
<table class="table">
  <tr><th>URL:</th><td><a href="https://site{site_id}.example.org/">https://site{site_id}.example.org/</a></td></tr>
  <tr><th>Segment:</th><td>Research</td></tr>
  <tr><th>City:</th><td>City {site_id}</td></tr>
  <tr><th>Country:</th><td>United States</td></tr>
</table>
"""
    return wrap_page(content, title=name)


def item_page(item_id: int, site_id: int, extra_rows: str = "") -> str:
    content = f"""
<h1>System {item_id} - Cluster, Xeon 2.4GHz, Infiniband</h1>
<table class="table">
  <tr><th>Site:</th><td><a href="https://www.top500.org/site/{site_id}">Site {site_id}</a></td></tr>
  <tr><th>Manufacturer:</th><td>Example Corp</td></tr>
  <tr><th>Cores:</th><td>12,345</td></tr>
  <tr><th>Linpack Performance (Rmax)</th><td>1,234.5 TFlop/s</td></tr>
  <tr><th>Operating System:</th><td>Linux</td></tr>
  <tr><th>Compiler:</th><td></td></tr>
{extra_rows}
</table>
"""
    return wrap_page(content, title=f"System {item_id}")


def write_detail_pages(cache: FetchCache, size: int = 500) -> None:
    """リスト size 件が参照する全サイト・全システムのページを書き込む."""
    for rank in range(1, size + 1):
        site_path = cache.detail_path("site", site_id_for(rank))
        if not site_path.exists():
            site_path.write_text(site_page(site_id_for(rank)), encoding="utf-8")
        cache.detail_path("item", item_id_for(rank)).write_text(
            item_page(item_id_for(rank), site_id_for(rank)), encoding="utf-8"
        )
