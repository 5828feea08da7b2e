"""
Serviços de automação dos sistemas IPTV

Módulos:
- logging_config: Fábrica centralizada de loggers
- painel_api: Cliente HTTP do painel remoto
- armazenamento: Acesso aos sistemas locais e à configuração de automação
- ledger: Registro append-only das execuções de automação
- sincronizacao: Reconciliação local x painel
- divergencias: Detecção de divergências (somente leitura)
- renovacao_automatica: Ciclo de renovação automática
"""
