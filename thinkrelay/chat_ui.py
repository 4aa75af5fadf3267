"""Landing page: a minimal browser client for the websocket relay."""

CHAT_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>thinkrelay</title>
<meta name="viewport" content="width=device-width,initial-scale=1">
<style>
*{box-sizing:border-box;margin:0;padding:0}
body{font-family:-apple-system,system-ui,sans-serif;background:#1a1a2e;color:#e0e0e0;height:100vh;display:flex;flex-direction:column}
#header{padding:12px 20px;background:#16213e;border-bottom:1px solid #0f3460;display:flex;align-items:center;gap:12px}
#header h1{font-size:18px;color:#e94560}
#status{font-size:12px;color:#4ecca3;margin-left:auto}
#chatContainer{flex:1;overflow-y:auto;padding:20px;display:flex;flex-direction:column;gap:16px}
.chat-bubble{max-width:80%;padding:12px 16px;border-radius:12px;line-height:1.5;white-space:pre-wrap;word-wrap:break-word;font-size:15px}
.sent{align-self:flex-end;background:#0f3460;color:#fff;border-bottom-right-radius:4px}
.received{align-self:flex-start;background:#16213e;border:1px solid #0f3460;border-bottom-left-radius:4px}
.thinking{align-self:flex-start;background:#111827;color:#9ca3af;font-style:italic;border:1px dashed #374151;cursor:pointer}
.thinking.collapsed{max-height:2.6em;overflow:hidden}
.error{align-self:center;color:#e94560;font-size:13px}
#input-area{padding:16px 20px;background:#16213e;border-top:1px solid #0f3460;display:flex;gap:10px}
#messageInput{flex:1;padding:12px 16px;border-radius:8px;border:1px solid #0f3460;background:#1a1a2e;color:#fff;font-size:15px;outline:none;font-family:inherit}
#send{padding:12px 24px;border-radius:8px;border:none;background:#e94560;color:#fff;font-size:15px;cursor:pointer;font-weight:600}
#send:disabled{background:#555;cursor:not-allowed}
</style></head><body>
<div id="header"><h1>thinkrelay</h1><span id="status">connecting...</span></div>
<div id="chatContainer"></div>
<div id="input-area">
<input id="messageInput" placeholder="Type a message... (exit to end the session)" autofocus>
<button id="send" onclick="send()">Send</button>
</div>
<script>
const chatContainer=document.getElementById('chatContainer');
const messageInput=document.getElementById('messageInput');
const btn=document.getElementById('send');
const statusEl=document.getElementById('status');
const ws=new WebSocket((location.protocol==='https:'?'wss://':'ws://')+location.host+'/ws');

let thinkingBubble=null, finalAnswerBubble=null, thinking=false, busy=false;

function createBubble(type, text){
  const bubble=document.createElement('div');
  bubble.className='chat-bubble '+type;
  bubble.textContent=text||'';
  chatContainer.appendChild(bubble);
  return bubble;
}

function setBusy(b){busy=b;btn.disabled=b}

ws.onopen=()=>{statusEl.textContent='connected';statusEl.style.color='#4ecca3'};
ws.onclose=()=>{statusEl.textContent='disconnected';statusEl.style.color='#e94560';setBusy(true)};

ws.onmessage=(event)=>{
  const data=JSON.parse(event.data);
  switch(data.event){
    case 'Thinking':
      thinking=true;
      thinkingBubble=createBubble('thinking','');
      thinkingBubble.addEventListener('click',e=>e.currentTarget.classList.toggle('collapsed'));
      break;
    case 'DoneThinking':
      thinking=false;
      if(thinkingBubble){thinkingBubble.classList.add('collapsed');thinkingBubble=null}
      break;
    case 'Token':
      if(thinking&&thinkingBubble){
        thinkingBubble.textContent+=data.token;
      }else{
        if(!finalAnswerBubble){finalAnswerBubble=createBubble('received','')}
        finalAnswerBubble.textContent+=data.token;
      }
      break;
    case 'Done':
      finalAnswerBubble=null;thinkingBubble=null;thinking=false;
      setBusy(false);messageInput.focus();
      break;
    case 'Error':
      createBubble('error',data.kind+': '+data.message);
      break;
    default:
      console.warn('Unknown event type:',data.event);
  }
  chatContainer.scrollTop=chatContainer.scrollHeight;
};

messageInput.addEventListener('keydown',e=>{if(e.key==='Enter'&&!e.shiftKey&&!busy){e.preventDefault();send()}});

function send(){
  const text=messageInput.value;
  if(!text.trim()||busy||ws.readyState!==WebSocket.OPEN)return;
  messageInput.value='';
  createBubble('sent',text);
  if(text.trim()!=='exit'){setBusy(true)}
  ws.send(text);
}
</script></body></html>"""
