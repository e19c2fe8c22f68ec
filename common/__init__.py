# Components shared by the executor node and its CLI
