import json
from typing import List, Tuple

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Live Server Dashboard</title>
<style>
body { font-family: sans-serif; margin: 2em; }
li { margin: 0.3em 0; }
.empty { color: #888; }
</style>
</head>
<body>
<h1>Live Server Dashboard</h1>
<ul id="servers"></ul>
<p id="empty" class="empty">No preview servers running.</p>
<script id="initial" type="application/json">__SERVERS__</script>
<script>
const servers = JSON.parse(document.getElementById("initial").textContent);
const list = document.getElementById("servers");

function render() {
  list.innerHTML = "";
  for (const [name, url] of servers) {
    const item = document.createElement("li");
    const link = document.createElement("a");
    link.href = url;
    link.textContent = name + " (" + url + ")";
    item.appendChild(link);
    list.appendChild(item);
  }
  document.getElementById("empty").hidden = servers.length > 0;
}

const socket = new WebSocket("ws://" + location.host + "/ws");
socket.onmessage = (message) => {
  const event = JSON.parse(message.data);
  if (event.added) {
    servers.push([event.name, event.url]);
  } else {
    const index = servers.findIndex(([n, u]) => n === event.name && u === event.url);
    if (index >= 0) servers.splice(index, 1);
  }
  render();
};
render();
</script>
</body>
</html>
"""

def render_dashboard(servers: List[Tuple[str, str]]) -> str:
    """Render the dashboard page with the current registry embedded"""
    payload = json.dumps(servers).replace("</", "<\\/")
    return PAGE_TEMPLATE.replace("__SERVERS__", payload)
